"""Launchpad: HTTP control server for a set of managed executables."""
