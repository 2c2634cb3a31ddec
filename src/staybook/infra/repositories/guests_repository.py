"""Guests repository - find-by-email-or-create within a property.

Uses raw SQL with psycopg2 (no ORM).

Email is the identity key (normalised to lowercase). The insert path uses
ON CONFLICT on (property_id, email), so two concurrent bookings for the same
new guest resolve to one row instead of failing. The caller is responsible
for running this inside a transaction (with txn() as cur:).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_or_create_guest(
    cur: PgCursor,
    *,
    property_id: str,
    first_name: str,
    last_name: str,
    email: str,
    phone: str | None = None,
) -> tuple[str, bool]:
    """Resolve the guest by email or create a new profile.

    An existing profile keeps its stored name; guest profile edits belong to
    the CRM surface, not to booking.

    Returns:
        Tuple of (guest_id, created).
    """
    email = normalize_email(email)

    cur.execute(
        """
        SELECT id FROM guests
        WHERE property_id = %s AND email = %s
        """,
        (property_id, email),
    )
    row = cur.fetchone()
    if row is not None:
        return str(row[0]), False

    cur.execute(
        """
        INSERT INTO guests (property_id, first_name, last_name, email, phone)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (property_id, email) DO UPDATE
        SET updated_at = now()
        RETURNING id, (xmax = 0) AS inserted
        """,
        (property_id, first_name, last_name, email, phone),
    )
    row = cur.fetchone()
    return str(row[0]), bool(row[1])
