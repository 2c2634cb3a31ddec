"""JSON log lines for staybook.

Each line is one object: the record's own time and level, the logger name,
the message, the request's correlation and property ids when set, and any
`extra_fields` the caller attached (already passed through safe_log_context).
LOG_LEVEL sets the threshold for staybook loggers (default INFO).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id, get_property_id

DEFAULT_LOG_LEVEL = "INFO"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in (
            ("correlationId", get_correlation_id()),
            ("propertyId", get_property_id()),
        ):
            if value:
                entry[key] = value

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            entry.update(extra_fields)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON lines to stdout; safe to call on every import."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(_level_from_env())
    logger.propagate = False
    return logger
