"""Audit repository - append-only audit log written in the same transaction
as the change it describes.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.observability.correlation import get_correlation_id

BOOKING_CREATED = "BOOKING_CREATED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"
BOOKING_STATUS_CHANGED = "BOOKING_STATUS_CHANGED"
ARI_EVENT_APPLIED = "ARI_EVENT_APPLIED"
ARI_BULK_UPDATED = "ARI_BULK_UPDATED"
ARI_BULK_UNDONE = "ARI_BULK_UNDONE"


def write_audit(
    cur: PgCursor,
    *,
    property_id: str,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str,
    payload: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> int:
    """Append an audit entry.

    Args:
        cur: Database cursor (within transaction).
        property_id: Property identifier.
        event_type: Event type (e.g., BOOKING_CREATED).
        aggregate_type: Aggregate type (e.g., reservation).
        aggregate_id: Aggregate ID.
        payload: JSON payload (no PII).
        correlation_id: Defaults to the current request's correlation id.

    Returns:
        The generated audit entry ID.
    """
    cur.execute(
        """
        INSERT INTO audit_logs (
            property_id, event_type, aggregate_type,
            aggregate_id, payload, correlation_id
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            property_id,
            event_type,
            aggregate_type,
            aggregate_id,
            json.dumps(payload or {}, default=str),
            correlation_id or get_correlation_id() or None,
        ),
    )
    return cur.fetchone()[0]
