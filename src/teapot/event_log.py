"""Structured per-request event logging.

Brief:
  Emits one JSON object per call on the ``teapot.events`` logger. Handlers
  and formatting for that logger are configured by
  ``teapot.config.logging_config.init_logging``.

Inputs:
  - Environment: TEAPOT_TRACE_ID, TEAPOT_SERVICE_VERSION (read per event).

Outputs:
  - JSON lines such as::

      {"time": "2024-05-01T12:00:00.000000Z", "trace_id": "abc", "level": "INFO",
       "service_version": 3, "message": "Blocked request", "url": "ads.example."}
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

EVENT_LOGGER_NAME = "teapot.events"
TRACE_ID_ENV = "TEAPOT_TRACE_ID"
SERVICE_VERSION_ENV = "TEAPOT_SERVICE_VERSION"

_events_logger = logging.getLogger(EVENT_LOGGER_NAME)

_trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "teapot_trace_id", default=""
)


class Level(str, Enum):
    """Event severity as rendered in the ``level`` field."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def logging_level(self) -> int:
        return _LOGGING_LEVELS[self]


_LOGGING_LEVELS = {
    Level.INFO: logging.INFO,
    Level.WARN: logging.WARNING,
    Level.ERROR: logging.ERROR,
}

# Keys owned by the event envelope; context entries may not overwrite them.
_RESERVED = ("time", "trace_id", "level", "service_version", "message")


def set_trace_id(trace_id: str) -> contextvars.Token:
    """
    Brief: Bind a trace id to the current request context.

    Inputs:
      - trace_id: Identifier to stamp on events emitted in this context.

    Outputs:
      - contextvars.Token for reset_trace_id().
    """

    return _trace_id_var.set(trace_id)


def reset_trace_id(token: contextvars.Token) -> None:
    _trace_id_var.reset(token)


def current_trace_id() -> str:
    """
    Brief: Return the trace id for the current event.

    Outputs:
      - str: Context-bound id, else $TEAPOT_TRACE_ID, else "".
    """

    bound = _trace_id_var.get()
    if bound:
        return bound
    return os.environ.get(TRACE_ID_ENV, "")


def current_service_version() -> int:
    """
    Brief: Return $TEAPOT_SERVICE_VERSION as an int, 0 when absent or unparsable.
    """

    raw = os.environ.get(SERVICE_VERSION_ENV, "0")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def _rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class LogEvent:
    """
    Brief: One structured log record.

    Inputs (constructor fields):
      - level: Level of the event.
      - message: Human readable summary.
      - context: Optional extra key/value pairs flattened into the record.
      - time/trace_id/service_version: Filled from clock and environment when
        omitted.

    Outputs:
      - LogEvent instance; to_dict()/to_json() give the wire shape.

    Example:
      >>> ev = LogEvent(Level.INFO, "hello", trace_id="t", service_version=1,
      ...               time="2024-01-01T00:00:00.000000Z")
      >>> ev.to_dict()["level"]
      'INFO'
    """

    level: Level
    message: str
    context: Dict[str, str] = field(default_factory=dict)
    time: str = field(default_factory=_rfc3339_now)
    trace_id: str = field(default_factory=current_trace_id)
    service_version: int = field(default_factory=current_service_version)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "time": self.time,
            "trace_id": self.trace_id,
            "level": self.level.value,
            "service_version": self.service_version,
            "message": self.message,
        }
        for key, value in self.context.items():
            if key in _RESERVED:
                key = f"context_{key}"
            out[key] = value
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def _stringify(context: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not context:
        return {}
    return {str(k): "" if v is None else str(v) for k, v in context.items()}


def log_event(
    level: Level, message: str, context: Optional[Mapping[str, Any]] = None
) -> LogEvent:
    """
    Brief: Build and emit one structured event.

    Inputs:
      - level: Level of the event.
      - message: Summary text.
      - context: Optional mapping; values are rendered with str().

    Outputs:
      - LogEvent: The emitted event (useful in tests).

    Notes:
      - Handler failures are reported by logging.Handler.handleError and never
        propagate to the caller.
    """

    event = LogEvent(level=level, message=message, context=_stringify(context))
    _events_logger.log(level.logging_level, event.to_json())
    return event


def info(message: str, context: Optional[Mapping[str, Any]] = None) -> LogEvent:
    return log_event(Level.INFO, message, context)


def warn(message: str, context: Optional[Mapping[str, Any]] = None) -> LogEvent:
    return log_event(Level.WARN, message, context)


def error(message: str, context: Optional[Mapping[str, Any]] = None) -> LogEvent:
    return log_event(Level.ERROR, message, context)
