from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List, Optional

from .config.config_parser import ConfigError, LaunchpadConfig, load_config
from .config.logging_config import init_logging
from .registry import ProcessRegistry
from .servers.webserver import HttpControlServer

logger = logging.getLogger("launchpad.main")


def wait_for_reload(
    shutdown_event: threading.Event,
    reload_requested: threading.Event,
    terminate_requested: threading.Event,
) -> bool:
    """Brief: Block until woken; report whether the wake-up was a reload.

    Inputs:
      - shutdown_event: Set by any signal handler (or by an embedding caller).
      - reload_requested: Set by the SIGHUP handler.
      - terminate_requested: Set by the SIGINT/SIGTERM handler.

    Outputs:
      - True when a reload should run (events are reset for the next wait);
        False when the process should shut down. Termination wins over a
        pending reload.
    """

    shutdown_event.wait()
    if terminate_requested.is_set() or not reload_requested.is_set():
        return False
    reload_requested.clear()
    shutdown_event.clear()
    # A terminate that raced the clear above must not be lost.
    if terminate_requested.is_set():
        shutdown_event.set()
        return False
    return True


def build_registry(cfg: LaunchpadConfig) -> ProcessRegistry:
    """Create a ProcessRegistry holding every configured executable, in order."""

    return ProcessRegistry([e.to_executable() for e in cfg.executables])


def build_server(
    cfg: LaunchpadConfig,
    registry: ProcessRegistry,
    port: Optional[int] = None,
    allowed: Optional[List[str]] = None,
) -> HttpControlServer:
    """Brief: Create an HttpControlServer from config plus CLI overrides.

    Inputs:
      - cfg: Validated configuration.
      - registry: Registry exposed by the server.
      - port: Optional --port override.
      - allowed: Optional --allow override (replaces the configured list).

    Outputs:
      - HttpControlServer (not started).
    """

    http_cfg = cfg.server.http
    return HttpControlServer(
        registry,
        port=http_cfg.port if port is None else port,
        allowed_addresses=allowed or http_cfg.allowed_addresses,
        page_strings=cfg.ui.page_strings(),
    )


def apply_server_settings(
    server: HttpControlServer,
    cfg: LaunchpadConfig,
    port: Optional[int] = None,
    allowed: Optional[List[str]] = None,
) -> None:
    """Brief: Apply (re)loaded HTTP settings and restart the server if running.

    Inputs:
      - server: Running or stopped HttpControlServer.
      - cfg: Freshly loaded configuration.
      - port/allowed: CLI overrides, which keep precedence over the file.

    Outputs:
      - None. Raises OSError when the restarted server cannot bind.
    """

    was_running = server.is_running
    server.stop()
    server.port = cfg.server.http.port if port is None else port
    server.allowed_addresses = list(allowed or cfg.server.http.allowed_addresses)
    server.page_strings = cfg.ui.page_strings()
    if was_running:
        server.start()


def main(
    argv: List[str] | None = None,
    shutdown_event: Optional[threading.Event] = None,
) -> int:
    """
    Main entry point: load config, start managed executables and the control
    server, then block until SIGINT/SIGTERM.

    Args:
        argv: Command-line arguments.
        shutdown_event: Optional event that stops the server when set (tests).

    Returns:
        An exit code: 0 on clean shutdown, 1 on config or bind errors.

    Example use:
        CLI:
            launchpad --config config.yaml --allow '*'
    """
    parser = argparse.ArgumentParser(
        description="HTTP control server for managed executables"
    )
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument(
        "--port", type=int, default=None, help="Override server.http.port"
    )
    parser.add_argument(
        "--allow",
        action="append",
        default=None,
        metavar="ADDRESS",
        help="Allowed client address/hostname or '*' (repeatable; replaces config list)",
    )
    parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Do not start executables marked auto_start",
    )
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(str(exc))
        return 1

    init_logging(cfg.logging)
    logger.info("Loaded config from %s", args.config)

    registry = build_registry(cfg)
    server = build_server(cfg, registry, port=args.port, allowed=args.allow)
    shutdown_event = shutdown_event or threading.Event()
    reload_requested = threading.Event()
    terminate_requested = threading.Event()

    def _sigterm_handler(_signum, _frame):
        logger.info("Received termination signal, shutting down")
        terminate_requested.set()
        shutdown_event.set()

    def _sighup_handler(_signum, _frame):
        reload_requested.set()
        shutdown_event.set()

    try:
        server.start()
    except OSError as exc:
        logger.error("Control server could not start: %s", exc)
        return 1

    previous_handlers = {}
    for signame, handler in (
        ("SIGTERM", _sigterm_handler),
        ("SIGINT", _sigterm_handler),
        ("SIGHUP", _sighup_handler),
    ):
        sig = getattr(signal, signame, None)
        if sig is None:
            continue
        try:
            previous_handlers[sig] = signal.signal(sig, handler)
        except (ValueError, OSError):
            # Not on the main thread (embedded use, tests).
            logger.debug("Could not install %s handler", signame)

    logger.info("Control server available at %s", server.url)
    if not args.no_autostart:
        registry.start_autostart()

    exit_code = 0
    try:
        while wait_for_reload(shutdown_event, reload_requested, terminate_requested):
            logger.info("Received SIGHUP, reloading %s", args.config)
            try:
                apply_server_settings(
                    server, load_config(args.config), port=args.port, allowed=args.allow
                )
            except ConfigError as exc:
                logger.error("Reload failed, keeping current settings: %s", exc)
            except OSError as exc:
                logger.error("Control server could not restart: %s", exc)
                exit_code = 1
                break
    finally:
        server.stop()
        registry.stop_all()
        for sig, previous in previous_handlers.items():
            signal.signal(sig, previous)

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
