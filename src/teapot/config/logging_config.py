from __future__ import annotations

import atexit
import logging
import logging.handlers
import os
import queue
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from teapot.event_log import EVENT_LOGGER_NAME

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

# Listener draining the events queue when events.queue is enabled.
_EVENT_LISTENER: Optional[logging.handlers.QueueListener] = None


class BracketLevelFormatter(logging.Formatter):
    """Custom formatter that adds bracketed lowercase level tags and UTC timestamps."""

    _TAGS = {
        logging.DEBUG: "[debug]",
        logging.INFO: "[info]",
        logging.WARNING: "[warn]",
        logging.ERROR: "[error]",
        logging.CRITICAL: "[crit]",
    }

    def formatTime(self, record, datefmt=None):
        """Format the record creation time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        """Add level_tag attribute and format the record."""
        record.level_tag = self._TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


class EventLineFormatter(logging.Formatter):
    """Emit the pre-rendered JSON event line unchanged."""

    def format(self, record):
        return record.getMessage()


def _file_handler(file_path: object) -> Optional[logging.Handler]:
    if not isinstance(file_path, str) or not file_path.strip():
        return None
    path = os.path.abspath(os.path.expanduser(file_path.strip()))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8")


def stop_event_queue() -> None:
    """
    Brief: Flush and stop the background event listener, if running.

    Inputs:
      - None

    Outputs:
      - None
    """
    global _EVENT_LISTENER
    if _EVENT_LISTENER is not None:
        _EVENT_LISTENER.stop()
        _EVENT_LISTENER = None


def _init_event_logging(cfg: Dict[str, Any]) -> None:
    """
    Brief: Configure the ``teapot.events`` logger.

    Inputs:
      - cfg: Mapping with optional keys:
          - stdout: bool, echo JSON lines to stdout (default True)
          - file: path to append JSON lines to
          - queue: bool, hand records to a QueueListener thread so callers
            never block on the sink (default False)

    Outputs:
      - None
    """
    global _EVENT_LISTENER
    stop_event_queue()

    events = logging.getLogger(EVENT_LOGGER_NAME)
    events.setLevel(logging.INFO)
    # JSON lines must not be re-wrapped by the bracketed root format.
    events.propagate = False
    for h in list(events.handlers):
        events.removeHandler(h)

    formatter = EventLineFormatter()
    sinks: List[logging.Handler] = []
    if cfg.get("stdout", True):
        sinks.append(logging.StreamHandler(sys.stdout))
    fh = _file_handler(cfg.get("file"))
    if fh is not None:
        sinks.append(fh)
    for sink in sinks:
        sink.setFormatter(formatter)

    if cfg.get("queue", False) and sinks:
        q: "queue.SimpleQueue[logging.LogRecord]" = queue.SimpleQueue()
        events.addHandler(logging.handlers.QueueHandler(q))
        _EVENT_LISTENER = logging.handlers.QueueListener(
            q, *sinks, respect_handler_level=True
        )
        _EVENT_LISTENER.start()
        return

    if not sinks:
        events.addHandler(logging.NullHandler())
    for sink in sinks:
        events.addHandler(sink)


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize logging configuration based on the provided config.

    Args:
        cfg: Logging configuration dictionary with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: boolean to log to stderr (default: True)
            - file: string path to log file (optional)
            - syslog: boolean or dict to enable syslog logging (optional)
                Can be a boolean (True uses defaults) or a dict with:
                - address: Unix socket path (default: /dev/log)
                - facility: syslog facility (default: USER)
            - events: dict configuring structured request events (see
              _init_event_logging)

    Example config:
        {
            "level": "info",
            "stderr": True,
            "file": "./teapot.log",
            "events": {"stdout": True, "queue": True}
        }
    """
    cfg = cfg or {}

    level_str = str(cfg.get("level", "info")).lower()
    level = _LEVELS.get(level_str, logging.INFO)

    fmt = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
    formatter = BracketLevelFormatter(fmt=fmt)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_handler = _file_handler(cfg.get("file"))
    if file_handler is not None:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            if isinstance(syslog_cfg, dict):
                address = syslog_cfg.get("address", "/dev/log")
                facility = getattr(
                    logging.handlers.SysLogHandler,
                    f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
                    logging.handlers.SysLogHandler.LOG_USER,
                )
            else:
                address = "/dev/log"
                facility = logging.handlers.SysLogHandler.LOG_USER
            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
            syslog_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
            root.addHandler(syslog_handler)
        except (
            OSError,
            ValueError,
        ) as e:  # pragma: no cover - environment-specific
            root.warning("Failed to configure syslog: %s", e)

    _init_event_logging(dict(cfg.get("events") or {}))

    logging.captureWarnings(True)


atexit.register(stop_event_queue)
