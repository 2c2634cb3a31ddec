"""Bulk ARI updater and undo.

One logical update across a date range x room types x one rate plan,
applied inside a single transaction: every touched row changes, or none
does. Before values of every touched row are stored in the bulk's
ari_events payload so the whole operation can be reversed later.

Fields (each explicitly Unset or Set, see domain.patch):
- available: SET semantics on inventory (total follows booked + available)
- price_cents: rate for the plan, flagged manual, propagated to derived
  child plans; with plan BASE it is the inventory base price
- min_los / max_los / closed_to_arrival / closed_to_departure / closed:
  restriction row for (room type, date, plan)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import AlreadyUndone, NotFound, ValidationFailed
from staybook.domain.patch import BulkFieldsPatch
from staybook.domain.quote_cache import QuoteCache
from staybook.domain.rate_plans import RatePlan, derive_price
from staybook.infra.db import txn
from staybook.infra.repositories import (
    ari_events_repository,
    audit_repository,
    catalog_repository,
    inventory_repository,
    restrictions_repository,
)
from staybook.infra.repositories.ari_events_repository import (
    SOURCE_BULK,
    STATUS_APPLIED,
    STATUS_UNDONE,
)
from staybook.infra.repositories.inventory_repository import (
    UPDATE_SET,
    InventoryCounts,
    apply_availability_change,
)
from staybook.infra.repositories.restrictions_repository import BASE_RATE_PLAN_CODE
from staybook.infra.time import days_inclusive, js_weekday
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context

logger = get_logger(__name__)

MAX_RANGE_DAYS = 180


@dataclass(frozen=True)
class BulkUpdate:
    date_from: date
    date_to: date
    room_type_ids: tuple[str, ...]
    fields: BulkFieldsPatch
    rate_plan_code: str = BASE_RATE_PLAN_CODE
    days_of_week: tuple[int, ...] | None = None
    override_manual: bool = False

    def validate(self) -> None:
        if self.date_from > self.date_to:
            raise ValidationFailed("fromDate must not be after toDate")
        if (self.date_to - self.date_from).days > MAX_RANGE_DAYS:
            raise ValidationFailed(f"Date range cannot exceed {MAX_RANGE_DAYS} days")
        if not self.room_type_ids:
            raise ValidationFailed("At least one room type is required")
        if self.fields.is_empty():
            raise ValidationFailed("At least one field must be provided")
        if self.days_of_week is not None:
            if not self.days_of_week:
                raise ValidationFailed("daysOfWeek cannot be empty")
            if any(d < 0 or d > 6 for d in self.days_of_week):
                raise ValidationFailed("daysOfWeek values must be between 0 and 6")

        changes = self.fields.changes()
        if changes.get("price_cents") is not None and changes["price_cents"] <= 0:
            raise ValidationFailed("price must be positive")
        if "price_cents" in changes and changes["price_cents"] is None:
            raise ValidationFailed("price cannot be null")
        if "available" in changes and (changes["available"] is None or changes["available"] < 0):
            raise ValidationFailed("available must be a non-negative integer")
        for name in ("min_los", "max_los"):
            if changes.get(name) is not None and changes[name] < 1:
                raise ValidationFailed(f"{name} must be at least 1")
        min_los, max_los = changes.get("min_los"), changes.get("max_los")
        if min_los is not None and max_los is not None and min_los > max_los:
            raise ValidationFailed("min_los cannot exceed max_los")

    def dates(self) -> list[date]:
        allowed = set(self.days_of_week) if self.days_of_week is not None else None
        return [
            day
            for day in days_inclusive(self.date_from, self.date_to)
            if allowed is None or js_weekday(day) in allowed
        ]


@dataclass
class BulkResult:
    message: str
    event_id: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class _Snapshot:
    inventory: list[dict[str, Any]] = field(default_factory=list)
    rates: list[dict[str, Any]] = field(default_factory=list)
    restrictions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inventory": self.inventory,
            "rates": self.rates,
            "restrictions": self.restrictions,
        }


def _event_type_for(changes: dict[str, Any]) -> str:
    """Type recorded for the bulk event (availability > rate > restriction)."""
    if "available" in changes:
        return "AVAILABILITY"
    if "price_cents" in changes:
        return "RATE"
    return "RESTRICTION"


def _descendants(plan_code: str, plans: list[RatePlan]) -> list[tuple[RatePlan, RatePlan]]:
    """(parent, child) pairs of derived plans below plan_code, parents first."""
    pairs = []
    frontier = [plan_code]
    seen = {plan_code}
    while frontier:
        parent_code = frontier.pop(0)
        for plan in plans:
            if plan.is_derived and plan.parent_code == parent_code and plan.code not in seen:
                parent = next(p for p in plans if p.code == parent_code)
                pairs.append((parent, plan))
                seen.add(plan.code)
                frontier.append(plan.code)
    return pairs


def _write_rate(
    cur: PgCursor,
    snapshot: _Snapshot,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_code: str,
    day: date,
    amount_cents: int,
    is_manual_override: bool,
) -> None:
    before = catalog_repository.lock_rate(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        rate_plan_code=rate_plan_code,
        day=day,
    )
    snapshot.rates.append(
        {
            "room_type_id": room_type_id,
            "rate_plan_code": rate_plan_code,
            "date": day.isoformat(),
            "before": before,
        }
    )
    catalog_repository.upsert_rate(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        rate_plan_code=rate_plan_code,
        day=day,
        amount_cents=amount_cents,
        is_manual_override=is_manual_override,
    )


def _update_price(
    cur: PgCursor,
    snapshot: _Snapshot,
    warnings: list[str],
    *,
    property_id: str,
    room_type_id: str,
    plan_code: str,
    derived_pairs: list[tuple[RatePlan, RatePlan]],
    day: date,
    price_cents: int,
    override_manual: bool,
) -> None:
    _write_rate(
        cur,
        snapshot,
        property_id=property_id,
        room_type_id=room_type_id,
        rate_plan_code=plan_code,
        day=day,
        amount_cents=price_cents,
        is_manual_override=True,
    )

    prices = {plan_code: price_cents}
    for parent, child in derived_pairs:
        if parent.code not in prices:
            continue
        current = catalog_repository.lock_rate(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            rate_plan_code=child.code,
            day=day,
        )
        if current is not None and current["is_manual_override"] and not override_manual:
            warnings.append(
                f"{day.isoformat()}: {child.code} has a manual rate and was not updated"
            )
            continue
        prices[child.code] = derive_price(prices[parent.code], child)
        _write_rate(
            cur,
            snapshot,
            property_id=property_id,
            room_type_id=room_type_id,
            rate_plan_code=child.code,
            day=day,
            amount_cents=prices[child.code],
            is_manual_override=False,
        )


def _update_inventory(
    cur: PgCursor,
    snapshot: _Snapshot,
    warnings: list[str],
    *,
    property_id: str,
    room_type_id: str,
    day: date,
    changes: dict[str, Any],
) -> None:
    created = inventory_repository.ensure_row(
        cur, property_id=property_id, room_type_id=room_type_id, day=day
    )
    if created:
        warnings.append(
            f"{day.isoformat()}: no inventory row for room type {room_type_id}, created with defaults"
        )
    row = inventory_repository.lock_row(
        cur, property_id=property_id, room_type_id=room_type_id, day=day
    )
    snapshot.inventory.append(
        {
            "room_type_id": room_type_id,
            "date": day.isoformat(),
            "created": created,
            "total": row["total"],
            "booked": row["booked"],
            "available": row["available"],
            "price_cents": row["price_cents"],
        }
    )

    if "available" in changes:
        counts = InventoryCounts(
            total=row["total"], booked=row["booked"], available=row["available"]
        )
        change = apply_availability_change(counts, UPDATE_SET, changes["available"])
        inventory_repository.write_counts(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            day=day,
            counts=change.counts,
        )
    if "price_cents" in changes:
        inventory_repository.write_price(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            day=day,
            price_cents=changes["price_cents"],
        )


def update_bulk(
    property_id: str,
    update: BulkUpdate,
    *,
    quote_cache: QuoteCache | None = None,
) -> BulkResult:
    """Apply a bulk ARI update atomically and record an undoable event."""
    update.validate()
    dates = update.dates()
    if not dates:
        raise ValidationFailed("No dates in range match daysOfWeek")

    changes = update.fields.changes()
    restriction_patch = update.fields.restriction_patch()
    plan_code = update.rate_plan_code or BASE_RATE_PLAN_CODE
    room_level = plan_code == BASE_RATE_PLAN_CODE
    warnings: list[str] = []
    snapshot = _Snapshot()
    event_id = f"bulk_{uuid.uuid4().hex}"

    with txn() as cur:
        room_types = catalog_repository.get_room_types_by_ids(
            cur, property_id=property_id, room_type_ids=update.room_type_ids
        )
        missing = sorted(set(update.room_type_ids) - set(room_types))
        if missing:
            raise NotFound(f"Room type(s) not found: {', '.join(missing)}")

        derived_pairs: list[tuple[RatePlan, RatePlan]] = []
        if not room_level:
            plans = catalog_repository.list_rate_plans(cur, property_id=property_id)
            if not any(p.code == plan_code for p in plans):
                raise NotFound(f"Rate plan {plan_code} not found")
            derived_pairs = _descendants(plan_code, plans)

        inventory_changes = {
            k: v
            for k, v in changes.items()
            if k == "available" or (k == "price_cents" and room_level)
        }

        for room_type_id in sorted(room_types):
            for day in dates:
                if inventory_changes:
                    _update_inventory(
                        cur,
                        snapshot,
                        warnings,
                        property_id=property_id,
                        room_type_id=room_type_id,
                        day=day,
                        changes=inventory_changes,
                    )
                if "price_cents" in changes and not room_level:
                    _update_price(
                        cur,
                        snapshot,
                        warnings,
                        property_id=property_id,
                        room_type_id=room_type_id,
                        plan_code=plan_code,
                        derived_pairs=derived_pairs,
                        day=day,
                        price_cents=changes["price_cents"],
                        override_manual=update.override_manual,
                    )
                if not restriction_patch.is_empty():
                    before, _ = restrictions_repository.upsert_patch(
                        cur,
                        property_id=property_id,
                        room_type_id=room_type_id,
                        day=day,
                        rate_plan_code=plan_code,
                        patch=restriction_patch,
                    )
                    snapshot.restrictions.append(
                        {
                            "room_type_id": room_type_id,
                            "rate_plan_code": plan_code,
                            "date": day.isoformat(),
                            "before": before,
                        }
                    )

        payload = {
            "fields": changes,
            "room_type_ids": sorted(room_types),
            "rate_plan_code": plan_code,
            "days_of_week": list(update.days_of_week) if update.days_of_week else None,
            "override_manual": update.override_manual,
            "dates": len(dates),
            "warnings": warnings,
            "snapshot": snapshot.to_dict(),
        }
        ari_events_repository.insert_event(
            cur,
            property_id=property_id,
            event_id=event_id,
            event_type=_event_type_for(changes),
            status=STATUS_APPLIED,
            source=SOURCE_BULK,
            rate_plan_code=plan_code,
            date_from=update.date_from,
            date_to=update.date_to,
            payload=payload,
        )
        audit_repository.write_audit(
            cur,
            property_id=property_id,
            event_type=audit_repository.ARI_BULK_UPDATED,
            aggregate_type="ari_event",
            aggregate_id=event_id,
            payload={k: v for k, v in payload.items() if k != "snapshot"},
        )

    if quote_cache is not None:
        quote_cache.invalidate_property(property_id)

    logger.info(
        "bulk ari update applied",
        extra={
            "extra_fields": safe_log_context(
                event_id=event_id,
                rate_plan_code=plan_code,
                room_types=len(room_types),
                dates=len(dates),
                warnings=len(warnings),
            )
        },
    )
    return BulkResult(
        message=f"Updated {len(dates)} date(s) across {len(room_types)} room type(s)",
        event_id=event_id,
        warnings=warnings,
    )


def _restore_inventory(cur: PgCursor, property_id: str, item: dict[str, Any]) -> str | None:
    day = date.fromisoformat(item["date"])
    row = inventory_repository.lock_row(
        cur, property_id=property_id, room_type_id=item["room_type_id"], day=day
    )
    if row is None:
        return None

    # Bookings made since the bulk stay covered
    total = max(item["total"], row["booked"])
    warning = None
    if total != item["total"]:
        warning = (
            f"{day.isoformat()}: total kept at {total} to cover "
            f"{row['booked']} booked unit(s)"
        )
    inventory_repository.write_counts(
        cur,
        property_id=property_id,
        room_type_id=item["room_type_id"],
        day=day,
        counts=InventoryCounts(
            total=total, booked=row["booked"], available=total - row["booked"]
        ),
    )
    inventory_repository.write_price(
        cur,
        property_id=property_id,
        room_type_id=item["room_type_id"],
        day=day,
        price_cents=item["price_cents"],
    )
    return warning


def _restore_rate(cur: PgCursor, property_id: str, item: dict[str, Any]) -> None:
    key = dict(
        property_id=property_id,
        room_type_id=item["room_type_id"],
        rate_plan_code=item["rate_plan_code"],
        day=date.fromisoformat(item["date"]),
    )
    before = item["before"]
    if before is None:
        catalog_repository.delete_rate(cur, **key)
    else:
        catalog_repository.upsert_rate(
            cur,
            amount_cents=before["amount_cents"],
            is_manual_override=before["is_manual_override"],
            **key,
        )


def _restore_restriction(cur: PgCursor, property_id: str, item: dict[str, Any]) -> None:
    key = dict(
        property_id=property_id,
        room_type_id=item["room_type_id"],
        day=date.fromisoformat(item["date"]),
        rate_plan_code=item["rate_plan_code"],
    )
    if item["before"] is None:
        restrictions_repository.delete(cur, **key)
    else:
        restrictions_repository.write(cur, values=item["before"], **key)


def undo_bulk(
    property_id: str,
    event_id: str,
    *,
    quote_cache: QuoteCache | None = None,
) -> BulkResult:
    """Reverse a bulk update from its stored snapshot.

    Raises:
        NotFound: unknown event id.
        ValidationFailed: the event is not a bulk update.
        AlreadyUndone: the bulk was already reversed.
    """
    warnings: list[str] = []
    with txn() as cur:
        event = ari_events_repository.get_event(
            cur, property_id=property_id, event_id=event_id, for_update=True
        )
        if event is None:
            raise NotFound(f"ARI event {event_id} not found")
        if event["source"] != SOURCE_BULK:
            raise ValidationFailed("Only bulk updates can be undone")
        if event["status"] == STATUS_UNDONE:
            raise AlreadyUndone(f"Bulk update {event_id} was already undone")

        snapshot = event["payload"].get("snapshot") or {}
        for item in reversed(snapshot.get("rates", [])):
            _restore_rate(cur, property_id, item)
        for item in reversed(snapshot.get("restrictions", [])):
            _restore_restriction(cur, property_id, item)
        for item in reversed(snapshot.get("inventory", [])):
            warning = _restore_inventory(cur, property_id, item)
            if warning:
                warnings.append(warning)

        ari_events_repository.mark_status(
            cur, property_id=property_id, event_id=event_id, status=STATUS_UNDONE
        )
        audit_repository.write_audit(
            cur,
            property_id=property_id,
            event_type=audit_repository.ARI_BULK_UNDONE,
            aggregate_type="ari_event",
            aggregate_id=event_id,
            payload={"warnings": warnings},
        )

    if quote_cache is not None:
        quote_cache.invalidate_property(property_id)

    logger.info(
        "bulk ari update undone",
        extra={"extra_fields": safe_log_context(event_id=event_id, warnings=len(warnings))},
    )
    return BulkResult(message="Bulk update undone", event_id=event_id, warnings=warnings)
