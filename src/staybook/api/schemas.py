"""Shared wire conventions.

JSON bodies use camelCase; snake_case is accepted on input. Money is always
integer cents.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

# LOS is an acronym on the wire (minLOS), not a word
_WIRE_NAMES = {"min_los": "minLOS", "max_los": "maxLOS"}


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def wire_name(name: str) -> str:
    return _WIRE_NAMES.get(name) or to_camel(name)


def camelize(value: Any) -> Any:
    """Recursively convert dict keys to their camelCase wire names."""
    if isinstance(value, dict):
        return {wire_name(k) if isinstance(k, str) else k: camelize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [camelize(v) for v in value]
    return value


def validation_message(exc: ValidationError | Any) -> str:
    """One-line summary of pydantic errors: `field.path: message; ...`."""
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"
