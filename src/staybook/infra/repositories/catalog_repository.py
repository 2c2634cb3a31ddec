"""Catalog repository - room types, rate plans and nightly rates.

Uses raw SQL with psycopg2 (no ORM). Every query is scoped by property_id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.rate_plans import Adjustment, ChildTier, RatePlan


@dataclass(frozen=True)
class RoomType:
    id: str
    code: str
    name: str
    max_adults: int
    max_children: int

    def fits(self, adults: int, children: int) -> bool:
        return adults <= self.max_adults and children <= self.max_children


_ROOM_TYPE_COLUMNS = "id, code, name, max_adults, max_children"


def list_room_types(
    cur: PgCursor,
    *,
    property_id: str,
    codes: Iterable[str] | None = None,
) -> list[RoomType]:
    """Room types of a property, optionally filtered by code."""
    if codes is None:
        cur.execute(
            f"""
            SELECT {_ROOM_TYPE_COLUMNS}
            FROM room_types
            WHERE property_id = %s
            ORDER BY code
            """,
            (property_id,),
        )
    else:
        cur.execute(
            f"""
            SELECT {_ROOM_TYPE_COLUMNS}
            FROM room_types
            WHERE property_id = %s AND code = ANY(%s)
            ORDER BY code
            """,
            (property_id, list(codes)),
        )
    return [RoomType(*row) for row in cur.fetchall()]


def get_room_type_by_code(cur: PgCursor, *, property_id: str, code: str) -> RoomType | None:
    cur.execute(
        f"""
        SELECT {_ROOM_TYPE_COLUMNS}
        FROM room_types
        WHERE property_id = %s AND code = %s
        """,
        (property_id, code),
    )
    row = cur.fetchone()
    return RoomType(*row) if row is not None else None


def get_room_types_by_ids(
    cur: PgCursor, *, property_id: str, room_type_ids: Iterable[str]
) -> dict[str, RoomType]:
    cur.execute(
        f"""
        SELECT {_ROOM_TYPE_COLUMNS}
        FROM room_types
        WHERE property_id = %s AND id = ANY(%s)
        """,
        (property_id, list(room_type_ids)),
    )
    return {row[0]: RoomType(*row) for row in cur.fetchall()}


# ── Rate plans ──────────────────────────────────────────────────

_RATE_PLAN_SELECT = """
    SELECT rp.id, rp.code, rp.name, rp.parent_rate_plan_id, parent.code,
           rp.derived_type, rp.derived_value, rp.rounding_rule,
           rp.single_type, rp.single_value,
           rp.triple_type, rp.triple_value,
           rp.quad_type, rp.quad_value,
           rp.extra_adult_type, rp.extra_adult_value,
           rp.child_tier1_active, rp.child_tier1_max_age, rp.child_tier1_price_cents,
           rp.child_tier2_active, rp.child_tier2_max_age, rp.child_tier2_price_cents,
           rp.child_tier3_active, rp.child_tier3_max_age, rp.child_tier3_price_cents,
           rp.cancellation_policy
    FROM rate_plans rp
    LEFT JOIN rate_plans parent
      ON parent.property_id = rp.property_id AND parent.id = rp.parent_rate_plan_id
    WHERE rp.property_id = %s
"""


def _row_to_rate_plan(row: tuple[Any, ...]) -> RatePlan:
    tiers = []
    for offset in (16, 19, 22):
        active, max_age, price_cents = row[offset : offset + 3]
        if active and max_age is not None:
            tiers.append(ChildTier(max_age=max_age, price_cents=price_cents or 0))
    tiers.sort(key=lambda t: t.max_age)

    return RatePlan(
        id=row[0],
        code=row[1],
        name=row[2],
        parent_id=row[3],
        parent_code=row[4],
        derived=Adjustment.from_columns(row[5], row[6]),
        rounding_rule=row[7] or "NONE",
        single=Adjustment.from_columns(row[8], row[9]),
        triple=Adjustment.from_columns(row[10], row[11]),
        quad=Adjustment.from_columns(row[12], row[13]),
        extra_adult=Adjustment.from_columns(row[14], row[15]),
        child_tiers=tuple(tiers),
        cancellation_policy=row[25],
    )


def list_rate_plans(cur: PgCursor, *, property_id: str) -> list[RatePlan]:
    cur.execute(_RATE_PLAN_SELECT + " ORDER BY rp.code", (property_id,))
    return [_row_to_rate_plan(row) for row in cur.fetchall()]


def get_rate_plan_by_code(cur: PgCursor, *, property_id: str, code: str) -> RatePlan | None:
    cur.execute(_RATE_PLAN_SELECT + " AND rp.code = %s", (property_id, code))
    row = cur.fetchone()
    return _row_to_rate_plan(row) if row is not None else None


# ── Rates ───────────────────────────────────────────────────────


def fetch_rates(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_ids: Iterable[str],
    start: date,
    end: date,
    rate_plan_codes: Iterable[str] | None = None,
) -> dict[tuple[str, str, date], dict[str, Any]]:
    """Rate rows for start <= date < end.

    Keyed by (room_type_id, rate_plan_code, date).
    """
    room_type_ids = list(room_type_ids)
    if not room_type_ids:
        return {}
    query = """
        SELECT room_type_id, rate_plan_code, date, amount_cents, is_manual_override
        FROM rates
        WHERE property_id = %s
          AND room_type_id = ANY(%s)
          AND date >= %s
          AND date < %s
    """
    params: list[Any] = [property_id, room_type_ids, start, end]
    if rate_plan_codes is not None:
        query += " AND rate_plan_code = ANY(%s)"
        params.append(list(rate_plan_codes))
    cur.execute(query, params)
    return {
        (row[0], row[1], row[2]): {"amount_cents": row[3], "is_manual_override": row[4]}
        for row in cur.fetchall()
    }


def lock_rate(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_code: str,
    day: date,
) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT amount_cents, is_manual_override
        FROM rates
        WHERE property_id = %s AND room_type_id = %s AND rate_plan_code = %s AND date = %s
        FOR UPDATE
        """,
        (property_id, room_type_id, rate_plan_code, day),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"amount_cents": row[0], "is_manual_override": row[1]}


def upsert_rate(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_code: str,
    day: date,
    amount_cents: int,
    is_manual_override: bool,
) -> None:
    cur.execute(
        """
        INSERT INTO rates (
            property_id, room_type_id, rate_plan_code, date,
            amount_cents, is_manual_override
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (property_id, room_type_id, rate_plan_code, date) DO UPDATE
        SET amount_cents = EXCLUDED.amount_cents,
            is_manual_override = EXCLUDED.is_manual_override,
            updated_at = now()
        """,
        (property_id, room_type_id, rate_plan_code, day, amount_cents, is_manual_override),
    )


def delete_rate(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_code: str,
    day: date,
) -> None:
    cur.execute(
        """
        DELETE FROM rates
        WHERE property_id = %s AND room_type_id = %s AND rate_plan_code = %s AND date = %s
        """,
        (property_id, room_type_id, rate_plan_code, day),
    )