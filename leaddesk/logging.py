from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from leaddesk.context import get_correlation_id


# Structured `extra=` keys that make it into the JSON line; anything else is dropped.
LOG_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "lead_id",
        "user_id",
        "role",
        "assigned_to",
        "requested_assignee",
        "operation",
        "outcome",
        "count",
        "inserted",
        "skipped",
        "error",
    }
)
MAX_ERROR_LENGTH = 500

_base_factory = logging.getLogRecordFactory()


def _stamp_correlation_id(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def correlated_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    """Record factory that tags every record, so third-party handlers see the id too."""

    return _stamp_correlation_id(_base_factory(*args, **kwargs))


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {key: getattr(record, key) for key in LOG_FIELDS if hasattr(record, key)}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging() -> None:
    """Send JSON lines to stdout at LOG_LEVEL. Safe to call more than once."""

    root = logging.getLogger()
    if any(isinstance(handler.formatter, JsonLogFormatter) for handler in root.handlers):
        return

    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    logging.setLogRecordFactory(correlated_record_factory)
