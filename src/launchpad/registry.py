"""Managed executables and the registry that starts/stops them.

The control server only ever talks to :class:`ExecutableRegistry`; the
subprocess-backed :class:`ProcessRegistry` is what the CLI wires in.
"""

from __future__ import annotations

import abc
import logging
import os
import shutil
import subprocess
import threading
from typing import List, Optional, Sequence

logger = logging.getLogger("launchpad.registry")


class ManagedExecutable:
    """Brief: One external program under control of a registry.

    Inputs (constructor):
      - name: Display name.
      - path: Program path (absolute, relative, or a bare name found on PATH).
      - args: Extra command-line arguments.
      - working_dir: Optional working directory for the process.
      - auto_start: Whether the registry launches it at startup.

    Outputs:
      - ManagedExecutable whose is_running/exists are computed on access.
    """

    def __init__(
        self,
        name: str,
        path: str = "",
        args: Optional[Sequence[str]] = None,
        working_dir: Optional[str] = None,
        auto_start: bool = False,
    ) -> None:
        self.name = name
        self.path = path
        self.args = list(args or [])
        self.working_dir = working_dir
        self.auto_start = bool(auto_start)
        self.process: Optional[subprocess.Popen] = None

    @property
    def is_running(self) -> bool:
        proc = self.process
        return proc is not None and proc.poll() is None

    @property
    def exists(self) -> bool:
        """Return True when path names a file on disk or a program on PATH."""

        if not self.path:
            return False
        if os.path.isfile(self.path):
            return True
        return shutil.which(self.path) is not None

    def __repr__(self) -> str:
        return f"ManagedExecutable(name={self.name!r}, path={self.path!r})"


class ExecutableRegistry(abc.ABC):
    """Brief: Source of truth for managed executables and their lifecycle.

    Implementations must be safe to call from multiple handler threads; the
    control server reads ``executables`` on every request and never caches it.
    """

    @property
    @abc.abstractmethod
    def executables(self) -> Sequence[ManagedExecutable]:
        """Ordered snapshot of the managed executables."""

    @abc.abstractmethod
    def start(self, exe: ManagedExecutable) -> None:
        """Start exe; raise on failure."""

    @abc.abstractmethod
    def stop(self, exe: ManagedExecutable) -> None:
        """Stop exe; raise on failure."""

    @abc.abstractmethod
    def restart(self, exe: ManagedExecutable) -> None:
        """Restart exe; raise on failure."""


class ProcessRegistry(ExecutableRegistry):
    """Brief: subprocess-backed registry used by the command-line entrypoint.

    Inputs (constructor):
      - executables: Initial ordered sequence of ManagedExecutable.
      - stop_timeout: Seconds to wait after terminate() before kill().

    Outputs:
      - Registry whose start/stop/restart operate on real OS processes.

    Example:
      >>> reg = ProcessRegistry([ManagedExecutable("sleep", "sleep", ["60"])])
      >>> reg.start(reg.executables[0])
      >>> reg.stop_all()
    """

    def __init__(
        self,
        executables: Optional[Sequence[ManagedExecutable]] = None,
        stop_timeout: float = 5.0,
    ) -> None:
        self._lock = threading.RLock()
        self._executables: List[ManagedExecutable] = list(executables or [])
        self.stop_timeout = float(stop_timeout)

    @property
    def executables(self) -> Sequence[ManagedExecutable]:
        with self._lock:
            return tuple(self._executables)

    def add(self, exe: ManagedExecutable) -> None:
        with self._lock:
            self._executables.append(exe)

    def remove(self, exe: ManagedExecutable) -> None:
        """Stop (if needed) and drop exe; ids of later entries shift down."""

        with self._lock:
            if exe.is_running:
                self.stop(exe)
            self._executables.remove(exe)

    def start(self, exe: ManagedExecutable) -> None:
        with self._lock:
            if exe.is_running:
                raise RuntimeError(f"{exe.name} is already running")
            if not exe.exists:
                raise FileNotFoundError(f"Executable not found: {exe.path or '<unset>'}")

            cwd = exe.working_dir or None
            if cwd is None and os.path.isfile(exe.path):
                cwd = os.path.dirname(os.path.abspath(exe.path))
            exe.process = subprocess.Popen(
                [exe.path, *exe.args],
                cwd=cwd,
                stdin=subprocess.DEVNULL,
            )
            logger.info("Started %s (pid %d)", exe.name, exe.process.pid)

    def stop(self, exe: ManagedExecutable) -> None:
        with self._lock:
            proc = exe.process
            if proc is None or proc.poll() is not None:
                exe.process = None
                return

            proc.terminate()
            try:
                proc.wait(timeout=self.stop_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "%s did not exit within %.1fs; killing", exe.name, self.stop_timeout
                )
                proc.kill()
                proc.wait(timeout=self.stop_timeout)
            exe.process = None
            logger.info("Stopped %s", exe.name)

    def restart(self, exe: ManagedExecutable) -> None:
        with self._lock:
            self.stop(exe)
            self.start(exe)

    def start_autostart(self) -> None:
        """Start every auto_start entry; failures are logged, not raised."""

        for exe in self.executables:
            if not exe.auto_start or exe.is_running:
                continue
            try:
                self.start(exe)
            except Exception as exc:
                logger.error("Failed to auto-start %s: %s", exe.name, exc)

    def stop_all(self) -> None:
        for exe in self.executables:
            try:
                self.stop(exe)
            except Exception:
                logger.exception("Failed to stop %s", exe.name)
