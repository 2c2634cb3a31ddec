"""ARI event processor.

Per inbound event:

    RECEIVED -> dedupe check -> DEDUPED (terminal)
                             -> validate -> ERROR (terminal)
                                         -> apply -> APPLIED (terminal)

The dedupe check is the insert of the event row itself
(ON CONFLICT (property_id, event_id) DO NOTHING), done in the same
transaction as the apply, so a replayed delivery can never double-apply
even when both copies arrive concurrently. Domain and storage failures roll the
apply back and are recorded in a separate transaction as an ERROR row.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Union

import psycopg2
from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import DomainError, NotFound, ValidationFailed
from staybook.domain.patch import RestrictionPatch
from staybook.domain.quote_cache import QuoteCache
from staybook.infra.db import txn
from staybook.infra.repositories import (
    ari_events_repository,
    audit_repository,
    catalog_repository,
    inventory_repository,
    restrictions_repository,
)
from staybook.infra.repositories.ari_events_repository import (
    STATUS_APPLIED,
    STATUS_DEDUPED,
    STATUS_ERROR,
    STATUS_PENDING,
)
from staybook.infra.repositories.inventory_repository import (
    UPDATE_SET,
    UPDATE_TYPES,
    InventoryCounts,
    apply_availability_change,
)
from staybook.infra.repositories.restrictions_repository import BASE_RATE_PLAN_CODE
from staybook.infra.time import days_inclusive
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context

logger = get_logger(__name__)

AVAILABILITY = "AVAILABILITY"
RATE = "RATE"
RESTRICTION = "RESTRICTION"
EVENT_TYPES = (AVAILABILITY, RATE, RESTRICTION)


@dataclass(frozen=True)
class AvailabilityPayload:
    available: int
    update_type: str = UPDATE_SET


@dataclass(frozen=True)
class RateEntry:
    date: date
    price_cents: int


@dataclass(frozen=True)
class RatePayload:
    rates: tuple[RateEntry, ...] = ()
    base_rate_cents: int | None = None


EventPayload = Union[AvailabilityPayload, RatePayload, RestrictionPatch]


@dataclass(frozen=True)
class AriEvent:
    event_type: str
    room_type_code: str
    date_from: date
    date_to: date
    payload: EventPayload
    event_id: str | None = None
    rate_plan_code: str | None = None
    occurred_at: datetime | None = None
    channel_code: str | None = None


@dataclass
class AriEventResult:
    success: bool
    status: str
    event_id: str
    message: str
    warnings: list[str] = field(default_factory=list)


def generate_event_id(event_type: str, room_type_code: str) -> str:
    return f"ari_{event_type.lower()}_{room_type_code}_{uuid.uuid4().hex[:12]}"


def _payload_record(event: AriEvent) -> dict[str, Any]:
    payload = event.payload
    if isinstance(payload, AvailabilityPayload):
        return {"available": payload.available, "update_type": payload.update_type}
    if isinstance(payload, RatePayload):
        return {
            "rates": [
                {"date": r.date.isoformat(), "price_cents": r.price_cents}
                for r in payload.rates
            ],
            "base_rate_cents": payload.base_rate_cents,
        }
    return payload.changes()


def _apply_availability(
    cur: PgCursor,
    property_id: str,
    room_type_id: str,
    event: AriEvent,
    payload: AvailabilityPayload,
) -> list[str]:
    if payload.update_type not in UPDATE_TYPES:
        raise ValidationFailed(f"Unknown updateType {payload.update_type}")

    warnings = []
    for day in days_inclusive(event.date_from, event.date_to):
        inventory_repository.ensure_row(
            cur, property_id=property_id, room_type_id=room_type_id, day=day
        )
        row = inventory_repository.lock_row(
            cur, property_id=property_id, room_type_id=room_type_id, day=day
        )
        counts = InventoryCounts(
            total=row["total"], booked=row["booked"], available=row["available"]
        )
        change = apply_availability_change(counts, payload.update_type, payload.available)
        if change.clamped:
            warnings.append(
                f"{day.isoformat()}: decrement of {payload.available} clamped "
                f"to {counts.available} available"
            )
        inventory_repository.write_counts(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            day=day,
            counts=change.counts,
        )
    return warnings


def _apply_rate(
    cur: PgCursor,
    property_id: str,
    room_type_id: str,
    event: AriEvent,
    payload: RatePayload,
) -> list[str]:
    prices: dict[date, int] = {}
    if payload.base_rate_cents is not None:
        for day in days_inclusive(event.date_from, event.date_to):
            prices[day] = payload.base_rate_cents
    for entry in payload.rates:
        if not event.date_from <= entry.date <= event.date_to:
            raise ValidationFailed(
                f"Rate date {entry.date.isoformat()} is outside the event date range"
            )
        prices[entry.date] = entry.price_cents
    if not prices:
        raise ValidationFailed("RATE event requires rates or baseRateCents")
    if any(price <= 0 for price in prices.values()):
        raise ValidationFailed("Rates must be positive")

    plan_code = event.rate_plan_code
    if plan_code == BASE_RATE_PLAN_CODE:
        plan_code = None
    if plan_code is not None and catalog_repository.get_rate_plan_by_code(
        cur, property_id=property_id, code=plan_code
    ) is None:
        raise NotFound(f"Rate plan {plan_code} not found")

    warnings = []
    for day, price in sorted(prices.items()):
        if plan_code is not None:
            catalog_repository.upsert_rate(
                cur,
                property_id=property_id,
                room_type_id=room_type_id,
                rate_plan_code=plan_code,
                day=day,
                amount_cents=price,
                is_manual_override=False,
            )
            continue
        if inventory_repository.ensure_row(
            cur, property_id=property_id, room_type_id=room_type_id, day=day
        ):
            warnings.append(f"{day.isoformat()}: inventory row created with zero capacity")
        inventory_repository.write_price(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            day=day,
            price_cents=price,
        )
    return warnings


def _apply_restriction(
    cur: PgCursor,
    property_id: str,
    room_type_id: str,
    event: AriEvent,
    patch: RestrictionPatch,
) -> list[str]:
    if patch.is_empty():
        raise ValidationFailed("RESTRICTION event requires at least one field")
    for day in days_inclusive(event.date_from, event.date_to):
        restrictions_repository.upsert_patch(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            day=day,
            rate_plan_code=event.rate_plan_code or BASE_RATE_PLAN_CODE,
            patch=patch,
        )
    return []


def _apply(cur: PgCursor, property_id: str, event: AriEvent) -> list[str]:
    if event.date_from > event.date_to:
        raise ValidationFailed("dateRange.from must not be after dateRange.to")

    room_type = catalog_repository.get_room_type_by_code(
        cur, property_id=property_id, code=event.room_type_code
    )
    if room_type is None:
        raise NotFound(f"Room type {event.room_type_code} not found")

    payload = event.payload
    if event.event_type == AVAILABILITY and isinstance(payload, AvailabilityPayload):
        return _apply_availability(cur, property_id, room_type.id, event, payload)
    if event.event_type == RATE and isinstance(payload, RatePayload):
        return _apply_rate(cur, property_id, room_type.id, event, payload)
    if event.event_type == RESTRICTION and isinstance(payload, RestrictionPatch):
        return _apply_restriction(cur, property_id, room_type.id, event, payload)
    raise ValidationFailed(f"Payload does not match eventType {event.event_type}")


def process_event(
    property_id: str,
    event: AriEvent,
    *,
    quote_cache: QuoteCache | None = None,
) -> AriEventResult:
    """Dedupe, validate and apply one inbound ARI event."""
    event_id = event.event_id or generate_event_id(event.event_type, event.room_type_code)
    record = dict(
        property_id=property_id,
        event_id=event_id,
        event_type=event.event_type,
        channel_code=event.channel_code,
        room_type_code=event.room_type_code,
        rate_plan_code=event.rate_plan_code,
        date_from=event.date_from,
        date_to=event.date_to,
        occurred_at=event.occurred_at,
        payload=_payload_record(event),
    )
    log_ctx = safe_log_context(
        event_id=event_id,
        event_type=event.event_type,
        room_type_code=event.room_type_code,
        rate_plan_code=event.rate_plan_code,
    )

    try:
        with txn() as cur:
            if not ari_events_repository.insert_event(cur, status=STATUS_PENDING, **record):
                logger.info("ari event deduped", extra={"extra_fields": log_ctx})
                return AriEventResult(
                    success=True,
                    status=STATUS_DEDUPED,
                    event_id=event_id,
                    message="Event already processed",
                )

            warnings = _apply(cur, property_id, event)

            ari_events_repository.mark_status(
                cur, property_id=property_id, event_id=event_id, status=STATUS_APPLIED
            )
            audit_repository.write_audit(
                cur,
                property_id=property_id,
                event_type=audit_repository.ARI_EVENT_APPLIED,
                aggregate_type="ari_event",
                aggregate_id=event_id,
                payload={**record["payload"], "event_type": event.event_type, "warnings": warnings},
            )
    except DomainError as exc:
        _record_error(record, exc.message)
        logger.warning(
            "ari event rejected",
            extra={"extra_fields": {**log_ctx, "code": exc.code, "error": exc.message}},
        )
        return AriEventResult(
            success=False, status=STATUS_ERROR, event_id=event_id, message=exc.message
        )
    except psycopg2.Error as exc:
        message = "Event could not be stored"
        _record_error(record, f"{message}: {type(exc).__name__}")
        logger.exception(
            "ari event apply failed",
            extra={"extra_fields": {**log_ctx, "error": type(exc).__name__}},
        )
        return AriEventResult(success=False, status=STATUS_ERROR, event_id=event_id, message=message)

    if quote_cache is not None:
        quote_cache.invalidate_property(property_id)

    logger.info(
        "ari event applied",
        extra={"extra_fields": {**log_ctx, "warnings": str(len(warnings))}},
    )
    message = "Event applied"
    if warnings:
        message += f" with {len(warnings)} warning(s)"
    return AriEventResult(
        success=True,
        status=STATUS_APPLIED,
        event_id=event_id,
        message=message,
        warnings=warnings,
    )


def _record_error(record: dict[str, Any], error_message: str) -> None:
    """Dead-letter the event. Runs after the apply transaction rolled back."""
    with txn() as cur:
        ari_events_repository.insert_event(
            cur,
            status=STATUS_ERROR,
            error_message=error_message,
            **{**record, "payload": {**record["payload"], "error": error_message}},
        )


def list_events(property_id: str, **filters: Any) -> list[dict[str, Any]]:
    with txn() as cur:
        return ari_events_repository.list_events(cur, property_id=property_id, **filters)
