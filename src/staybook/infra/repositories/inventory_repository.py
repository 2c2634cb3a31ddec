"""Inventory repository - per (property, room type, date) capacity and price.

Uses raw SQL with psycopg2 (no ORM). Every mutator expects to run inside a
txn() and is guarded so that `available` never drops below zero and
`available = total - booked` holds after each write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import ValidationFailed
from staybook.observability.logging import get_logger

logger = get_logger(__name__)

UPDATE_SET = "SET"
UPDATE_INCREMENT = "INCREMENT"
UPDATE_DECREMENT = "DECREMENT"
UPDATE_TYPES = (UPDATE_SET, UPDATE_INCREMENT, UPDATE_DECREMENT)

_COLUMNS = "date, total, booked, available, price_cents"


@dataclass(frozen=True)
class InventoryCounts:
    total: int
    booked: int
    available: int


@dataclass(frozen=True)
class AvailabilityChange:
    counts: InventoryCounts
    clamped: bool = False


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "date": row[0],
        "total": row[1],
        "booked": row[2],
        "available": row[3],
        "price_cents": row[4],
    }


def apply_availability_change(
    counts: InventoryCounts, update_type: str, value: int
) -> AvailabilityChange:
    """Compute counts after an AVAILABILITY update.

    SET makes `value` rooms sellable (total = booked + value).
    INCREMENT/DECREMENT move available and total together (physical room
    count changes). A DECREMENT larger than what is available is clamped
    so neither bound goes below what is already booked.
    """
    if value < 0:
        raise ValidationFailed("availability value must be non-negative")

    if update_type == UPDATE_SET:
        new = InventoryCounts(
            total=counts.booked + value, booked=counts.booked, available=value
        )
        return AvailabilityChange(new)

    if update_type == UPDATE_INCREMENT:
        new = InventoryCounts(
            total=counts.total + value,
            booked=counts.booked,
            available=counts.available + value,
        )
        return AvailabilityChange(new)

    if update_type == UPDATE_DECREMENT:
        delta = min(value, max(counts.available, 0))
        new = InventoryCounts(
            total=counts.total - delta,
            booked=counts.booked,
            available=counts.available - delta,
        )
        return AvailabilityChange(new, clamped=delta < value)

    raise ValidationFailed(f"unknown updateType: {update_type}")


def fetch_range(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_ids: list[str],
    start: date,
    end: date,
) -> dict[tuple[str, date], dict[str, Any]]:
    """Fetch inventory rows for start <= date < end, keyed by (room type, date)."""
    if not room_type_ids:
        return {}
    cur.execute(
        f"""
        SELECT room_type_id, {_COLUMNS}
        FROM inventory
        WHERE property_id = %s
          AND room_type_id = ANY(%s)
          AND date >= %s
          AND date < %s
        ORDER BY room_type_id, date
        """,
        (property_id, list(room_type_ids), start, end),
    )
    return {(row[0], row[1]): _row_to_dict(row[1:]) for row in cur.fetchall()}


def lock_nights(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    checkin: date,
    checkout: date,
) -> dict[date, dict[str, Any]]:
    """Lock the inventory rows of a stay (FOR UPDATE, date ascending).

    Always locking in date order keeps concurrent bookings over
    overlapping stays from deadlocking each other.
    """
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM inventory
        WHERE property_id = %s
          AND room_type_id = %s
          AND date >= %s
          AND date < %s
        ORDER BY date
        FOR UPDATE
        """,
        (property_id, room_type_id, checkin, checkout),
    )
    return {row[0]: _row_to_dict(row) for row in cur.fetchall()}


def ensure_row(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
) -> bool:
    """Create an empty inventory row if absent. Returns True if created."""
    cur.execute(
        """
        INSERT INTO inventory (property_id, room_type_id, date, total, booked, available)
        VALUES (%s, %s, %s, 0, 0, 0)
        ON CONFLICT (property_id, room_type_id, date) DO NOTHING
        RETURNING date
        """,
        (property_id, room_type_id, day),
    )
    return cur.fetchone() is not None


def lock_row(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
) -> dict[str, Any] | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM inventory
        WHERE property_id = %s AND room_type_id = %s AND date = %s
        FOR UPDATE
        """,
        (property_id, room_type_id, day),
    )
    row = cur.fetchone()
    return _row_to_dict(row) if row is not None else None


def write_counts(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    counts: InventoryCounts,
) -> None:
    if counts.available != counts.total - counts.booked:
        raise ValueError(f"inventory counts out of balance: {counts}")
    cur.execute(
        """
        UPDATE inventory
        SET total = %s, booked = %s, available = %s, updated_at = now()
        WHERE property_id = %s AND room_type_id = %s AND date = %s
        """,
        (
            counts.total,
            counts.booked,
            counts.available,
            property_id,
            room_type_id,
            day,
        ),
    )


def write_price(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    price_cents: int | None,
) -> None:
    cur.execute(
        """
        UPDATE inventory
        SET price_cents = %s, updated_at = now()
        WHERE property_id = %s AND room_type_id = %s AND date = %s
        """,
        (price_cents, property_id, room_type_id, day),
    )


def book_night(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
) -> bool:
    """Take one unit for a night.

    Guarded by available >= 1, so a concurrent commit that already took the
    last unit makes this a no-op.

    Returns:
        True if the unit was taken, False if the guard failed.
    """
    cur.execute(
        """
        UPDATE inventory
        SET booked = booked + 1,
            available = available - 1,
            updated_at = now()
        WHERE property_id = %s
          AND room_type_id = %s
          AND date = %s
          AND available >= 1
        """,
        (property_id, room_type_id, day),
    )
    return cur.rowcount == 1


def release_night(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
) -> bool:
    """Give back one unit for a night. Guarded by booked >= 1."""
    cur.execute(
        """
        UPDATE inventory
        SET booked = booked - 1,
            available = available + 1,
            updated_at = now()
        WHERE property_id = %s
          AND room_type_id = %s
          AND date = %s
          AND booked >= 1
        """,
        (property_id, room_type_id, day),
    )
    updated = cur.rowcount == 1
    if not updated:
        logger.warning(
            "inventory release guard failed",
            extra={
                "extra_fields": {
                    "room_type_id": room_type_id,
                    "date": day.isoformat(),
                }
            },
        )
    return updated
