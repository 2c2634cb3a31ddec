"""Stay restriction enforcement.

Rules are checked in a fixed order and the first violation wins:

1. closed on any night of the stay
2. closed to arrival on the check-in date
3. closed to departure on the check-out date
4. stay shorter than any night's minimum LOS
5. stay longer than any night's maximum LOS

Room-level rows (rate plan BASE) and rate-plan rows for the same date are
merged, the stricter value winning.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import RestrictionViolation
from staybook.infra.repositories import restrictions_repository
from staybook.infra.repositories.restrictions_repository import BASE_RATE_PLAN_CODE
from staybook.infra.time import nights


def merge_rows(rows: Iterable[dict[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {
        "min_los": None,
        "max_los": None,
        "closed_to_arrival": False,
        "closed_to_departure": False,
        "closed": False,
    }
    for row in rows:
        for flag in ("closed_to_arrival", "closed_to_departure", "closed"):
            merged[flag] = merged[flag] or bool(row.get(flag))
        if row.get("min_los") is not None:
            current = merged["min_los"]
            merged["min_los"] = row["min_los"] if current is None else max(current, row["min_los"])
        if row.get("max_los") is not None:
            current = merged["max_los"]
            merged["max_los"] = row["max_los"] if current is None else min(current, row["max_los"])
    return merged


def load_stay_restrictions(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_code: str | None,
    checkin: date,
    checkout: date,
) -> dict[date, dict[str, Any]]:
    """Merged restrictions for every date from check-in to check-out inclusive."""
    codes = {BASE_RATE_PLAN_CODE}
    if rate_plan_code:
        codes.add(rate_plan_code)

    rows = restrictions_repository.fetch_range(
        cur,
        property_id=property_id,
        room_type_ids=[room_type_id],
        rate_plan_codes=sorted(codes),
        start=checkin,
        end=checkout,
    )
    by_date: dict[date, list[dict[str, Any]]] = {}
    for (_, day, _), row in rows.items():
        by_date.setdefault(day, []).append(row)
    return {day: merge_rows(day_rows) for day, day_rows in by_date.items()}


def check_stay(
    restrictions: dict[date, dict[str, Any]],
    checkin: date,
    checkout: date,
) -> None:
    """Raise RestrictionViolation for the first rule the stay breaks."""
    stay = list(nights(checkin, checkout))
    length = len(stay)
    rows = [(day, restrictions[day]) for day in stay if day in restrictions]

    for day, row in rows:
        if row["closed"]:
            raise RestrictionViolation(
                f"Date {day.isoformat()} is closed for sale",
                code=RestrictionViolation.DATE_CLOSED,
            )

    arrival = restrictions.get(checkin)
    if arrival and arrival["closed_to_arrival"]:
        raise RestrictionViolation(
            f"Arrival is not allowed on {checkin.isoformat()}",
            code=RestrictionViolation.CLOSED_TO_ARRIVAL,
        )

    departure = restrictions.get(checkout)
    if departure and departure["closed_to_departure"]:
        raise RestrictionViolation(
            f"Departure is not allowed on {checkout.isoformat()}",
            code=RestrictionViolation.CLOSED_TO_DEPARTURE,
        )

    for day, row in rows:
        if row["min_los"] is not None and length < row["min_los"]:
            raise RestrictionViolation(
                f"Stay of {length} night(s) is below the minimum stay of "
                f"{row['min_los']} night(s) required on {day.isoformat()}",
                code=RestrictionViolation.BELOW_MIN_STAY,
            )

    for day, row in rows:
        if row["max_los"] is not None and length > row["max_los"]:
            raise RestrictionViolation(
                f"Stay of {length} night(s) exceeds the maximum stay of "
                f"{row['max_los']} night(s) allowed on {day.isoformat()}",
                code=RestrictionViolation.EXCEEDS_MAX_STAY,
            )


def stay_is_allowed(
    restrictions: dict[date, dict[str, Any]],
    checkin: date,
    checkout: date,
) -> bool:
    try:
        check_stay(restrictions, checkin, checkout)
    except RestrictionViolation:
        return False
    return True
