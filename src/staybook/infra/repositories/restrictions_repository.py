"""Restrictions repository - stay rules per (room type, date, rate plan).

Room-level rules are stored under the reserved rate plan code BASE.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.patch import RestrictionPatch

BASE_RATE_PLAN_CODE = "BASE"

_FIELDS = ("min_los", "max_los", "closed_to_arrival", "closed_to_departure", "closed")


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    return dict(zip(_FIELDS, row))


def fetch_range(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_ids: Iterable[str],
    rate_plan_codes: Iterable[str],
    start: date,
    end: date,
) -> dict[tuple[str, date, str], dict[str, Any]]:
    """Restriction rows with start <= date <= end (both inclusive).

    Keyed by (room_type_id, date, rate_plan_code).
    """
    room_type_ids = list(room_type_ids)
    rate_plan_codes = list(rate_plan_codes)
    if not room_type_ids or not rate_plan_codes:
        return {}
    cur.execute(
        """
        SELECT room_type_id, date, rate_plan_code,
               min_los, max_los, closed_to_arrival, closed_to_departure, closed
        FROM restrictions
        WHERE property_id = %s
          AND room_type_id = ANY(%s)
          AND rate_plan_code = ANY(%s)
          AND date >= %s
          AND date <= %s
        ORDER BY room_type_id, date, rate_plan_code
        """,
        (property_id, room_type_ids, rate_plan_codes, start, end),
    )
    return {(row[0], row[1], row[2]): _row_to_dict(row[3:]) for row in cur.fetchall()}


def lock_one(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    rate_plan_code: str,
) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT min_los, max_los, closed_to_arrival, closed_to_departure, closed
        FROM restrictions
        WHERE property_id = %s AND room_type_id = %s AND date = %s AND rate_plan_code = %s
        FOR UPDATE
        """,
        (property_id, room_type_id, day, rate_plan_code),
    )
    row = cur.fetchone()
    return _row_to_dict(row) if row is not None else None


def write(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    rate_plan_code: str,
    values: dict[str, Any],
) -> None:
    """Insert or overwrite a full restriction row."""
    cur.execute(
        """
        INSERT INTO restrictions (
            property_id, room_type_id, date, rate_plan_code,
            min_los, max_los, closed_to_arrival, closed_to_departure, closed
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (property_id, room_type_id, date, rate_plan_code) DO UPDATE
        SET min_los = EXCLUDED.min_los,
            max_los = EXCLUDED.max_los,
            closed_to_arrival = EXCLUDED.closed_to_arrival,
            closed_to_departure = EXCLUDED.closed_to_departure,
            closed = EXCLUDED.closed,
            updated_at = now()
        """,
        (
            property_id,
            room_type_id,
            day,
            rate_plan_code,
            values.get("min_los"),
            values.get("max_los"),
            bool(values.get("closed_to_arrival")),
            bool(values.get("closed_to_departure")),
            bool(values.get("closed")),
        ),
    )


def upsert_patch(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    rate_plan_code: str,
    patch: RestrictionPatch,
) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    """Apply a patch to one row, creating it with defaults if absent.

    Returns:
        (before, after); before is None when the row was created.
    """
    before = lock_one(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        day=day,
        rate_plan_code=rate_plan_code,
    )
    after = patch.apply(before)
    write(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        day=day,
        rate_plan_code=rate_plan_code,
        values=after,
    )
    return before, after


def delete(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    rate_plan_code: str,
) -> None:
    cur.execute(
        """
        DELETE FROM restrictions
        WHERE property_id = %s AND room_type_id = %s AND date = %s AND rate_plan_code = %s
        """,
        (property_id, room_type_id, day, rate_plan_code),
    )
