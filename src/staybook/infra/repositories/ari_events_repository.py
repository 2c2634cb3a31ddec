"""ARI events repository - dedup key, audit trail and bulk undo snapshots.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

STATUS_PENDING = "PENDING"
STATUS_APPLIED = "APPLIED"
STATUS_DEDUPED = "DEDUPED"
STATUS_ERROR = "ERROR"
STATUS_UNDONE = "UNDONE"

SOURCE_CHANNEL = "CHANNEL"
SOURCE_BULK = "BULK"

_COLUMNS = """
    event_id, event_type, source, channel_code, room_type_code, rate_plan_code,
    date_from, date_to, occurred_at, payload, status, error_message,
    processed_at, created_at
"""
_FIELDS = [name.strip() for name in _COLUMNS.split(",")]


def _row_to_dict(row: tuple[Any, ...]) -> dict[str, Any]:
    return dict(zip(_FIELDS, row))


def insert_event(
    cur: PgCursor,
    *,
    property_id: str,
    event_id: str,
    event_type: str,
    status: str,
    payload: dict[str, Any],
    source: str = SOURCE_CHANNEL,
    channel_code: str | None = None,
    room_type_code: str | None = None,
    rate_plan_code: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    occurred_at: datetime | None = None,
    error_message: str | None = None,
) -> bool:
    """Insert an event row keyed by (property_id, event_id).

    Uses ON CONFLICT DO NOTHING so the insert doubles as the dedup check.

    Returns:
        True if inserted, False if the event id was already recorded.
    """
    cur.execute(
        """
        INSERT INTO ari_events (
            property_id, event_id, event_type, source, channel_code,
            room_type_code, rate_plan_code, date_from, date_to,
            occurred_at, payload, status, error_message, processed_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s,
                COALESCE(%s, now()), %s, %s, %s,
                CASE WHEN %s = 'PENDING' THEN NULL ELSE now() END)
        ON CONFLICT (property_id, event_id) DO NOTHING
        RETURNING id
        """,
        (
            property_id,
            event_id,
            event_type,
            source,
            channel_code,
            room_type_code,
            rate_plan_code,
            date_from,
            date_to,
            occurred_at,
            json.dumps(payload, default=str),
            status,
            error_message,
            status,
        ),
    )
    return cur.fetchone() is not None


def get_event(
    cur: PgCursor,
    *,
    property_id: str,
    event_id: str,
    for_update: bool = False,
) -> dict[str, Any] | None:
    query = f"""
        SELECT {_COLUMNS}
        FROM ari_events
        WHERE property_id = %s AND event_id = %s
    """
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (property_id, event_id))
    row = cur.fetchone()
    return _row_to_dict(row) if row is not None else None


def mark_status(
    cur: PgCursor,
    *,
    property_id: str,
    event_id: str,
    status: str,
) -> None:
    cur.execute(
        """
        UPDATE ari_events
        SET status = %s, processed_at = now()
        WHERE property_id = %s AND event_id = %s
        """,
        (status, property_id, event_id),
    )


def list_events(
    cur: PgCursor,
    *,
    property_id: str,
    status: str | None = None,
    event_type: str | None = None,
    room_type_code: str | None = None,
    rate_plan_code: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    conditions = ["property_id = %s"]
    params: list[Any] = [property_id]

    for column, value in (
        ("status", status),
        ("event_type", event_type),
        ("room_type_code", room_type_code),
        ("rate_plan_code", rate_plan_code),
    ):
        if value is not None:
            conditions.append(f"{column} = %s")
            params.append(value)
    if occurred_from is not None:
        conditions.append("occurred_at >= %s")
        params.append(occurred_from)
    if occurred_to is not None:
        conditions.append("occurred_at <= %s")
        params.append(occurred_to)

    params.append(limit)
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM ari_events
        WHERE {" AND ".join(conditions)}
        ORDER BY occurred_at DESC, id DESC
        LIMIT %s
        """,
        params,
    )
    return [_row_to_dict(row) for row in cur.fetchall()]
