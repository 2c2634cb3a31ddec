"""Reservations repository - persistence for reservation records.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_COLUMNS = """
    id, pnr, status, checkin, checkout, room_type_id, room_id, guest_id,
    adults, children, rate_plan_code, total_cents, currency, quote_id,
    channel_code, payment_reference, created_at, updated_at
"""
_FIELDS = [name.strip() for name in _COLUMNS.split(",")]


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    data = dict(zip(_FIELDS, row))
    data["id"] = str(data["id"])
    data["guest_id"] = str(data["guest_id"])
    return data


def insert_reservation(
    cur: PgCursor,
    *,
    property_id: str,
    pnr: str,
    status: str,
    checkin: date,
    checkout: date,
    room_type_id: str,
    guest_id: str,
    adults: int,
    children: int,
    rate_plan_code: str,
    total_cents: int,
    currency: str,
    quote_id: str | None = None,
    channel_code: str | None = None,
    payment_reference: str | None = None,
) -> str | None:
    """Insert a reservation.

    Uses ON CONFLICT DO NOTHING on (property_id, pnr) so a PNR collision is
    reported to the caller instead of aborting the transaction.

    Returns:
        The reservation UUID, or None if the PNR is already taken.
    """
    cur.execute(
        """
        INSERT INTO reservations (
            property_id, pnr, status, checkin, checkout, room_type_id,
            guest_id, adults, children, rate_plan_code, total_cents,
            currency, quote_id, channel_code, payment_reference
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (property_id, pnr) DO NOTHING
        RETURNING id
        """,
        (
            property_id,
            pnr,
            status,
            checkin,
            checkout,
            room_type_id,
            guest_id,
            adults,
            children,
            rate_plan_code,
            total_cents,
            currency,
            quote_id,
            channel_code,
            payment_reference,
        ),
    )
    row = cur.fetchone()
    return str(row[0]) if row is not None else None


def get_reservation(
    cur: PgCursor,
    *,
    property_id: str,
    reservation_id: str,
    for_update: bool = False,
) -> dict[str, Any] | None:
    query = f"""
        SELECT {_COLUMNS}
        FROM reservations
        WHERE property_id = %s AND id = %s
    """
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (property_id, reservation_id))
    row = cur.fetchone()
    return _row_to_dict(row) if row is not None else None


def list_reservations(
    cur: PgCursor,
    *,
    property_id: str,
    status: str | None = None,
    checkin_from: date | None = None,
    checkin_to: date | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    conditions = ["property_id = %s"]
    params: list[Any] = [property_id]

    if status is not None:
        conditions.append("status = %s")
        params.append(status)
    if checkin_from is not None:
        conditions.append("checkin >= %s")
        params.append(checkin_from)
    if checkin_to is not None:
        conditions.append("checkin <= %s")
        params.append(checkin_to)

    params.append(limit)
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM reservations
        WHERE {" AND ".join(conditions)}
        ORDER BY checkin, created_at
        LIMIT %s
        """,
        params,
    )
    return [_row_to_dict(row) for row in cur.fetchall()]


def update_status(
    cur: PgCursor,
    *,
    property_id: str,
    reservation_id: str,
    status: str,
) -> None:
    cur.execute(
        """
        UPDATE reservations
        SET status = %s,
            cancelled_at = CASE WHEN %s = 'CANCELLED' THEN now() ELSE cancelled_at END,
            updated_at = now()
        WHERE property_id = %s AND id = %s
        """,
        (status, status, property_id, reservation_id),
    )
