"""Availability matrix and ARI calendar grid.

Read-only views over inventory, rates and restrictions that the calendar
UI and reporting read.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable

from staybook.domain.errors import NotFound, ValidationFailed
from staybook.domain.rate_plans import resolve_base_price
from staybook.domain.restrictions import merge_rows
from staybook.infra.db import txn
from staybook.infra.property_settings import get_property_settings
from staybook.infra.repositories import (
    catalog_repository,
    inventory_repository,
    restrictions_repository,
)
from staybook.infra.repositories.restrictions_repository import BASE_RATE_PLAN_CODE
from staybook.infra.time import days_inclusive

DEFAULT_MATRIX_DAYS = 30
MAX_MATRIX_DAYS = 366


def _occupancy_pct(booked: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(booked * 100 / total, 1)


def get_availability_matrix(
    property_id: str,
    start_date: date,
    days: int = DEFAULT_MATRIX_DAYS,
) -> dict[str, Any]:
    """Per date and room type capacity, plus a daily property summary.

    Dates with no inventory row show zero capacity rather than being skipped,
    so the grid is always rectangular.
    """
    if days < 1 or days > MAX_MATRIX_DAYS:
        raise ValidationFailed(f"days must be between 1 and {MAX_MATRIX_DAYS}")
    end_date = start_date + timedelta(days=days)

    with txn(read_only=True) as cur:
        if get_property_settings(cur, property_id) is None:
            raise NotFound(f"Property {property_id} not found")
        room_types = catalog_repository.list_room_types(cur, property_id=property_id)
        inventory = inventory_repository.fetch_range(
            cur,
            property_id=property_id,
            room_type_ids=[rt.id for rt in room_types],
            start=start_date,
            end=end_date,
        )

    matrix = []
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        cells = []
        summary = {"total": 0, "booked": 0, "available": 0}
        for room_type in room_types:
            row = inventory.get((room_type.id, day))
            total = row["total"] if row else 0
            booked = row["booked"] if row else 0
            available = row["available"] if row else 0
            cells.append(
                {
                    "room_type_id": room_type.id,
                    "room_type_code": room_type.code,
                    "room_type_name": room_type.name,
                    "total": total,
                    "booked": booked,
                    "available": available,
                    "price_cents": row["price_cents"] if row else None,
                    "occupancy_pct": _occupancy_pct(booked, total),
                }
            )
            summary["total"] += total
            summary["booked"] += booked
            summary["available"] += available
        summary["occupancy_pct"] = _occupancy_pct(summary["booked"], summary["total"])
        matrix.append({"date": day.isoformat(), "room_types": cells, "summary": summary})

    return {
        "start_date": start_date.isoformat(),
        "end_date": (end_date - timedelta(days=1)).isoformat(),
        "days": matrix,
    }


def get_ari_grid(
    property_id: str,
    date_from: date,
    date_to: date,
    *,
    room_type_ids: Iterable[str] | None = None,
    rate_plan_codes: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Calendar grid: per room type an inventory line and, per rate plan,
    resolved nightly prices (derivation applied) and restrictions.
    """
    if date_from > date_to:
        raise ValidationFailed("from must not be after to")
    if (date_to - date_from).days >= MAX_MATRIX_DAYS:
        raise ValidationFailed(f"range cannot exceed {MAX_MATRIX_DAYS} days")
    days = list(days_inclusive(date_from, date_to))
    end_exclusive = date_to + timedelta(days=1)

    with txn(read_only=True) as cur:
        room_types = catalog_repository.list_room_types(cur, property_id=property_id)
        if room_type_ids is not None:
            wanted = set(room_type_ids)
            room_types = [rt for rt in room_types if rt.id in wanted]
        all_plans = catalog_repository.list_rate_plans(cur, property_id=property_id)
        plans_by_code = {p.code: p for p in all_plans}
        codes = [BASE_RATE_PLAN_CODE] + [p.code for p in all_plans if p.code != BASE_RATE_PLAN_CODE]
        if rate_plan_codes is not None:
            wanted_codes = set(rate_plan_codes)
            codes = [c for c in codes if c in wanted_codes]

        ids = [rt.id for rt in room_types]
        inventory = inventory_repository.fetch_range(
            cur, property_id=property_id, room_type_ids=ids, start=date_from, end=end_exclusive
        )
        rates = catalog_repository.fetch_rates(
            cur, property_id=property_id, room_type_ids=ids, start=date_from, end=end_exclusive
        )
        restrictions = restrictions_repository.fetch_range(
            cur,
            property_id=property_id,
            room_type_ids=ids,
            rate_plan_codes=set(codes) | {BASE_RATE_PLAN_CODE},
            start=date_from,
            end=date_to,
        )

    grid = []
    for room_type in room_types:
        inventory_line = []
        for day in days:
            row = inventory.get((room_type.id, day))
            inventory_line.append(
                {
                    "date": day.isoformat(),
                    "total": row["total"] if row else 0,
                    "booked": row["booked"] if row else 0,
                    "available": row["available"] if row else 0,
                    "price_cents": row["price_cents"] if row else None,
                }
            )

        plan_lines = []
        for code in codes:
            cells = []
            for day in days:
                row = inventory.get((room_type.id, day))
                rate_row = rates.get((room_type.id, code, day))
                day_rows = [
                    r
                    for r in (
                        restrictions.get((room_type.id, day, BASE_RATE_PLAN_CODE)),
                        restrictions.get((room_type.id, day, code)),
                    )
                    if r is not None
                ]
                cells.append(
                    {
                        "date": day.isoformat(),
                        "price_cents": resolve_base_price(
                            code,
                            room_type_id=room_type.id,
                            day=day,
                            plans_by_code=plans_by_code,
                            rates=rates,
                            inventory_price_cents=row["price_cents"] if row else None,
                        ),
                        "is_manual_override": bool(rate_row and rate_row["is_manual_override"]),
                        "restrictions": merge_rows(day_rows),
                    }
                )
            plan = plans_by_code.get(code)
            plan_lines.append(
                {
                    "rate_plan_code": code,
                    "rate_plan_name": plan.name if plan else "Base rate",
                    "parent_rate_plan_code": plan.parent_code if plan else None,
                    "days": cells,
                }
            )

        grid.append(
            {
                "room_type_id": room_type.id,
                "room_type_code": room_type.code,
                "room_type_name": room_type.name,
                "inventory": inventory_line,
                "rate_plans": plan_lines,
            }
        )

    return {"from": date_from.isoformat(), "to": date_to.isoformat(), "room_types": grid}
