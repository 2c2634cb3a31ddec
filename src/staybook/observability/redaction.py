"""Redaction helpers for safe logging.

Guest data (names, emails, phones) arrives in booking payloads and must
never reach a log line verbatim. Everything logged through
`safe_log_context` is reduced to a redacted string.
"""

import re
from datetime import date, datetime
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"

# Keys whose values are personal data regardless of their shape
_PII_KEYS = frozenset(
    {
        "first_name",
        "last_name",
        "firstName",
        "lastName",
        "guest_name",
        "email",
        "phone",
        "primary_guest",
        "primaryGuest",
    }
)


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={sorted(value.keys())})"
    if isinstance(value, (list, tuple, set)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {
        k: _REDACTED if k in _PII_KEYS and v is not None else redact_value(v)
        for k, v in kwargs.items()
    }
