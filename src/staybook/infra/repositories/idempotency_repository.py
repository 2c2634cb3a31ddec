"""Idempotency repository - claim rows for exactly-once mutating requests.

Uses raw SQL with psycopg2 (no ORM).

A key is claimed by inserting an `in_progress` row with ON CONFLICT DO
NOTHING; the primary key on (property_id, idempotency_key) makes the claim
a true create-if-absent. Every claim carries a claim_id token, and the
writes that finish a claim (complete, release) only match the current
token, so an owner whose stale claim was taken over cannot write.
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


def try_claim(
    cur: PgCursor,
    *,
    property_id: str,
    key: str,
    method: str,
    path: str,
    claim_id: str,
) -> bool:
    """Insert an in-progress claim. Returns True if this caller owns the key."""
    cur.execute(
        """
        INSERT INTO idempotency_keys
            (property_id, idempotency_key, method, path, status, claim_id)
        VALUES (%s, %s, %s, %s, 'in_progress', %s)
        ON CONFLICT (property_id, idempotency_key) DO NOTHING
        RETURNING idempotency_key
        """,
        (property_id, key, method, path, claim_id),
    )
    return cur.fetchone() is not None


def get_record(cur: PgCursor, *, property_id: str, key: str) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT method, path, status, response_code, response_body, created_at
        FROM idempotency_keys
        WHERE property_id = %s AND idempotency_key = %s
        """,
        (property_id, key),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "method": row[0],
        "path": row[1],
        "status": row[2],
        "response_code": row[3],
        "response_body": row[4],
        "created_at": row[5],
    }


def take_over_stale(
    cur: PgCursor,
    *,
    property_id: str,
    key: str,
    claim_id: str,
    timeout_seconds: int,
) -> bool:
    """Re-claim an in-progress row whose owner has gone quiet.

    The row gets the new claim_id, which locks the previous owner out.
    Returns True if the claim was taken over by this caller.
    """
    cur.execute(
        """
        UPDATE idempotency_keys
        SET created_at = now(),
            claim_id = %s
        WHERE property_id = %s
          AND idempotency_key = %s
          AND status = 'in_progress'
          AND created_at < now() - make_interval(secs => %s)
        """,
        (claim_id, property_id, key, timeout_seconds),
    )
    return cur.rowcount == 1


def complete(
    cur: PgCursor,
    *,
    property_id: str,
    key: str,
    claim_id: str,
    response_code: int,
    response_body: Any,
) -> bool:
    """Store the response. Returns False if claim_id no longer owns the key."""
    cur.execute(
        """
        UPDATE idempotency_keys
        SET status = 'completed',
            response_code = %s,
            response_body = %s,
            completed_at = now()
        WHERE property_id = %s
          AND idempotency_key = %s
          AND claim_id = %s
          AND status = 'in_progress'
        """,
        (response_code, json.dumps(response_body, default=str), property_id, key, claim_id),
    )
    return cur.rowcount == 1


def release(cur: PgCursor, *, property_id: str, key: str, claim_id: str) -> None:
    """Drop an in-progress claim so the key can be retried."""
    cur.execute(
        """
        DELETE FROM idempotency_keys
        WHERE property_id = %s
          AND idempotency_key = %s
          AND claim_id = %s
          AND status = 'in_progress'
        """,
        (property_id, key, claim_id),
    )
