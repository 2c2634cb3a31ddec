"""Per-property settings (currency, timezone).

Settings live on the `properties` row; the property is the tenant root, so a
missing row means the tenant context points at nothing.
"""

from __future__ import annotations

from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor

from .db import fetchone

DEFAULT_CURRENCY = "BRL"
DEFAULT_TIMEZONE = "America/Sao_Paulo"


@dataclass(frozen=True)
class PropertySettings:
    """Settings for one property."""

    property_id: str
    code: str
    name: str
    currency: str = DEFAULT_CURRENCY
    timezone: str = DEFAULT_TIMEZONE


def get_property_settings(cur: PgCursor, property_id: str) -> PropertySettings | None:
    """Load settings for a property, or None if the property does not exist."""
    row = fetchone(
        cur,
        """
        SELECT id, code, name, currency, timezone
        FROM properties
        WHERE id = %s
        """,
        (property_id,),
    )
    if row is None:
        return None

    return PropertySettings(
        property_id=row[0],
        code=row[1],
        name=row[2],
        currency=row[3] or DEFAULT_CURRENCY,
        timezone=row[4] or DEFAULT_TIMEZONE,
    )
