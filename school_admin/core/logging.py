"""JSON-lines logging for the admin service.

Each line carries the correlation id of the HTTP request being served (set by
the request logging middleware) and any of the structured ``extra`` keys the
services attach: who (``email``, ``session_id``), what (``admin_request_id``,
``event_type``, ``severity``) and why (``reason``).
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")

STRUCTURED_KEYS = (
    "email",
    "reason",
    "session_id",
    "admin_request_id",
    "event_type",
    "severity",
    "status",
    "path",
    "method",
    "status_code",
)

# Capped at WARNING under setup_logging.
_QUIET_LOGGERS = ("pymongo", "uvicorn.access")


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": CORRELATION_ID_CTX.get(),
        }
        entry.update(
            (key, value)
            for key in STRUCTURED_KEYS
            if (value := getattr(record, key, None)) not in (None, "")
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Replace root handlers with a single stdout JSON handler."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_correlation_id(correlation_id: str) -> None:
    CORRELATION_ID_CTX.set(correlation_id)


def get_correlation_id() -> str:
    return CORRELATION_ID_CTX.get()
