"""Logging setup for the launchpad process.

Every record is written as ``<UTC timestamp> [level] logger: message``. The
``logging`` config block chooses the root level, the sinks (stderr and/or a
file) and optional per-logger levels, e.g. to surface the control server's
access lines without turning on debug output everywhere::

    logging:
      level: info
      file: ~/.local/state/launchpad/launchpad.log
      loggers:
        launchpad.webserver: debug
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import Any, Dict, List, Mapping, Optional

# Canonical tag first; aliases accepted when reading config.
_LEVEL_ALIASES = (
    (logging.DEBUG, ("debug",)),
    (logging.INFO, ("info",)),
    (logging.WARNING, ("warn", "warning")),
    (logging.ERROR, ("error",)),
    (logging.CRITICAL, ("crit", "critical")),
)
_LEVELS = {name: level for level, names in _LEVEL_ALIASES for name in names}
_TAGS = {level: f"[{names[0]}]" for level, names in _LEVEL_ALIASES}

LOG_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"


class BracketLevelFormatter(logging.Formatter):
    """Formatter with bracketed lowercase level tags and UTC timestamps."""

    converter = time.gmtime

    def formatTime(self, record, datefmt=None):  # noqa: N802
        return time.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ", self.converter(record.created))

    def format(self, record):
        record.level_tag = _TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


def parse_level(value: Any) -> int:
    """Map a config level name (debug/info/warn/error/crit) to a logging level."""

    return _LEVELS.get(str(value or "info").strip().lower(), logging.INFO)


def _build_handlers(cfg: Mapping[str, Any]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        handlers.append(logging.StreamHandler(sys.stderr))

    file_path = str(cfg.get("file") or "").strip()
    if file_path:
        path = os.path.abspath(os.path.expanduser(file_path))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))
    return handlers


def init_logging(cfg: Optional[Mapping[str, Any]]) -> None:
    """Brief: (Re)configure the root logger from the ``logging`` config block.

    Inputs:
      - cfg: Mapping with optional keys ``level`` (default info), ``stderr``
        (default True), ``file`` (path; parent directories are created) and
        ``loggers`` (logger name -> level). None means all defaults.

    Outputs:
      - None. Existing root handlers are replaced, so calling this again on
        a config reload does not duplicate output.
    """

    cfg = cfg or {}
    formatter = BracketLevelFormatter(fmt=LOG_FORMAT)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(parse_level(cfg.get("level")))

    for handler in _build_handlers(cfg):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    overrides: Dict[str, Any] = dict(cfg.get("loggers") or {})
    for name, level in overrides.items():
        logging.getLogger(str(name)).setLevel(parse_level(level))

    logging.captureWarnings(True)
