"""Logging setup.

Two channels:
  - regular module loggers (logging.getLogger(__name__)), plain text on stderr
  - structured events via log_event(): one JSON object per line, written to
    the configured event log file or to stderr
"""
from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_events = logging.getLogger("mediadb.events")
_events.propagate = False
_events.setLevel(logging.INFO)


def configure_logging(level: str = "info", event_log: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(LOG_LEVELS[level])
    if not any(getattr(h, "_mediadb", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mediadb = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    for h in list(_events.handlers):
        _events.removeHandler(h)
        h.close()
    if event_log:
        Path(event_log).parent.mkdir(parents=True, exist_ok=True)
        _events.addHandler(logging.FileHandler(event_log, encoding="utf-8"))


def log_event(event: str, **fields) -> None:
    rec = {"ts": time.time(), "event": event, **fields}
    line = json.dumps(rec, separators=(",", ":"), default=str)
    if not _events.handlers:
        # Fallback stderr to avoid silent loss
        print(line, file=sys.stderr)
        return
    _events.info(line)
