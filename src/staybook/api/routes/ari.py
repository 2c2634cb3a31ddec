"""ARI endpoints: channel events, bulk updates, undo and the calendar grid.

POST /ari/events answers 202 when applied, 409 when the event id was
already processed and 422 when the event could not be applied. Schema or
context problems are 400.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator

from staybook.api.context import RequestContext, get_request_context, require_channel_context
from staybook.api.dependencies import get_quote_cache
from staybook.api.schemas import CamelModel, camelize, validation_message
from staybook.domain import ari_events
from staybook.domain.ari_events import (
    AriEvent,
    AvailabilityPayload,
    RateEntry,
    RatePayload,
)
from staybook.domain.bulk_ari import BulkUpdate, undo_bulk, update_bulk
from staybook.domain.availability import get_ari_grid
from staybook.domain.errors import ValidationFailed
from staybook.domain.patch import BulkFieldsPatch, RestrictionPatch, Set
from staybook.domain.quote_cache import QuoteCache
from staybook.infra.repositories.ari_events_repository import (
    STATUS_APPLIED,
    STATUS_DEDUPED,
)
from staybook.infra.repositories.restrictions_repository import BASE_RATE_PLAN_CODE

router = APIRouter(prefix="/ari", tags=["ari"])

_EVENT_STATUS_CODES = {STATUS_APPLIED: 202, STATUS_DEDUPED: 409}

# Counts, cents and stay lengths are stored in INT columns
MAX_INT = 2_147_483_647


# ── Schemas ───────────────────────────────────────────────


class DateRange(CamelModel):
    date_from: date = Field(validation_alias=AliasChoices("from", "date_from", "dateFrom"))
    date_to: date = Field(validation_alias=AliasChoices("to", "date_to", "dateTo"))


class AvailabilityPayloadBody(CamelModel):
    available: int = Field(ge=0, le=MAX_INT)
    update_type: Literal["SET", "INCREMENT", "DECREMENT"] = "SET"


class RateEntryBody(CamelModel):
    date: date
    price_cents: int = Field(gt=0, le=MAX_INT)


class RatePayloadBody(CamelModel):
    rates: list[RateEntryBody] = Field(default_factory=list)
    base_rate_cents: int | None = Field(default=None, gt=0, le=MAX_INT)

    @model_validator(mode="after")
    def _require_prices(self) -> RatePayloadBody:
        if not self.rates and self.base_rate_cents is None:
            raise ValueError("rates or baseRateCents is required")
        return self


class RestrictionFieldsBody(CamelModel):
    min_los: int | None = Field(
        default=None, ge=1, le=MAX_INT, validation_alias=AliasChoices("minLOS", "minLos", "min_los")
    )
    max_los: int | None = Field(
        default=None, ge=1, le=MAX_INT, validation_alias=AliasChoices("maxLOS", "maxLos", "max_los")
    )
    closed_to_arrival: bool | None = None
    closed_to_departure: bool | None = None
    closed: bool | None = None

    @model_validator(mode="after")
    def _los_order(self) -> RestrictionFieldsBody:
        if self.min_los is not None and self.max_los is not None and self.min_los > self.max_los:
            raise ValueError("minLOS cannot exceed maxLOS")
        return self

    def to_patch(self) -> RestrictionPatch:
        return RestrictionPatch(
            **{name: Set(getattr(self, name)) for name in self.model_fields_set}
        )


class AriEventBody(CamelModel):
    event_id: str | None = Field(default=None, min_length=1, max_length=128)
    event_type: Literal["AVAILABILITY", "RATE", "RESTRICTION"]
    room_type_code: str = Field(min_length=1)
    rate_plan_code: str | None = None
    date_range: DateRange
    occurred_at: datetime | None = None
    payload: dict[str, Any]


class BulkFieldsBody(CamelModel):
    # Amount in cents; there is no currency-unit alias
    price_cents: int | None = Field(
        default=None, gt=0, le=MAX_INT, validation_alias=AliasChoices("priceCents", "price_cents")
    )
    available: int | None = Field(default=None, ge=0, le=MAX_INT)
    min_los: int | None = Field(
        default=None, ge=1, le=MAX_INT, validation_alias=AliasChoices("minLOS", "minLos", "min_los")
    )
    max_los: int | None = Field(
        default=None, ge=1, le=MAX_INT, validation_alias=AliasChoices("maxLOS", "maxLos", "max_los")
    )
    closed_to_arrival: bool | None = None
    closed_to_departure: bool | None = None
    closed: bool | None = None

    @model_validator(mode="after")
    def _at_least_one(self) -> BulkFieldsBody:
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self

    def to_patch(self) -> BulkFieldsPatch:
        return BulkFieldsPatch.from_changes(
            {name: getattr(self, name) for name in self.model_fields_set}
        )


class BulkUpdateBody(CamelModel):
    from_date: date
    to_date: date
    room_type_ids: list[str] = Field(min_length=1)
    rate_plan_code: str = BASE_RATE_PLAN_CODE
    fields: BulkFieldsBody
    days_of_week: list[int] | None = None
    override_manual: bool = False

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, v: list[int] | None) -> list[int] | None:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("daysOfWeek values must be between 0 (Sunday) and 6 (Saturday)")
        return v


class UndoBody(CamelModel):
    event_id: str = Field(min_length=1)


def _parse_event_payload(body: AriEventBody) -> Any:
    try:
        if body.event_type == ari_events.AVAILABILITY:
            p = AvailabilityPayloadBody.model_validate(body.payload)
            return AvailabilityPayload(available=p.available, update_type=p.update_type)
        if body.event_type == ari_events.RATE:
            p = RatePayloadBody.model_validate(body.payload)
            return RatePayload(
                rates=tuple(RateEntry(date=r.date, price_cents=r.price_cents) for r in p.rates),
                base_rate_cents=p.base_rate_cents,
            )
        return RestrictionFieldsBody.model_validate(body.payload).to_patch()
    except ValidationError as exc:
        raise ValidationFailed(f"payload: {validation_message(exc)}") from exc


# ── POST /ari/events ──────────────────────────────────────


@router.post("/events")
def ingest_event(
    body: AriEventBody,
    ctx: RequestContext = Depends(require_channel_context),
    cache: QuoteCache = Depends(get_quote_cache),
) -> JSONResponse:
    """Apply one channel ARI event (deduplicated by eventId)."""
    event = AriEvent(
        event_type=body.event_type,
        room_type_code=body.room_type_code,
        date_from=body.date_range.date_from,
        date_to=body.date_range.date_to,
        payload=_parse_event_payload(body),
        event_id=body.event_id,
        rate_plan_code=body.rate_plan_code,
        occurred_at=body.occurred_at,
        channel_code=ctx.channel_code,
    )
    result = ari_events.process_event(ctx.property_id, event, quote_cache=cache)
    return JSONResponse(
        status_code=_EVENT_STATUS_CODES.get(result.status, 422),
        content={
            "success": result.success,
            "status": result.status,
            "eventId": result.event_id,
            "message": result.message,
            "warnings": result.warnings,
        },
    )


# ── GET /ari/events ───────────────────────────────────────


@router.get("/events")
def get_events(
    status: str | None = Query(default=None),
    event_type: str | None = Query(default=None, alias="eventType"),
    room_type_code: str | None = Query(default=None, alias="roomTypeCode"),
    rate_plan_code: str | None = Query(default=None, alias="ratePlanCode"),
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    limit: int = Query(default=50, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
) -> dict:
    """Recent ARI events, newest first."""
    events = ari_events.list_events(
        ctx.property_id,
        status=status,
        event_type=event_type,
        room_type_code=room_type_code,
        rate_plan_code=rate_plan_code,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
    )
    for event in events:
        # Undo snapshots are internal
        event["payload"] = {k: v for k, v in (event["payload"] or {}).items() if k != "snapshot"}
    return {"events": jsonable_encoder(camelize(events))}


# ── POST /ari/bulk ────────────────────────────────────────


@router.post("/bulk")
def bulk_update(
    body: BulkUpdateBody,
    ctx: RequestContext = Depends(get_request_context),
    cache: QuoteCache = Depends(get_quote_cache),
) -> dict:
    """Apply one update across dates x room types, all or nothing."""
    update = BulkUpdate(
        date_from=body.from_date,
        date_to=body.to_date,
        room_type_ids=tuple(body.room_type_ids),
        fields=body.fields.to_patch(),
        rate_plan_code=body.rate_plan_code,
        days_of_week=tuple(body.days_of_week) if body.days_of_week is not None else None,
        override_manual=body.override_manual,
    )
    result = update_bulk(ctx.property_id, update, quote_cache=cache)
    return {"message": result.message, "warnings": result.warnings, "eventId": result.event_id}


# ── POST /ari/undo ────────────────────────────────────────


@router.post("/undo")
def undo_bulk_update(
    body: UndoBody,
    ctx: RequestContext = Depends(get_request_context),
    cache: QuoteCache = Depends(get_quote_cache),
) -> dict:
    """Reverse a bulk update from its snapshot."""
    result = undo_bulk(ctx.property_id, body.event_id, quote_cache=cache)
    return {"message": result.message, "warnings": result.warnings, "eventId": result.event_id}


# ── GET /ari/calendar ─────────────────────────────────────


@router.get("/calendar")
def calendar(
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    room_type_ids: list[str] | None = Query(default=None, alias="roomTypeIds"),
    rate_plan_codes: list[str] | None = Query(default=None, alias="ratePlanCodes"),
    ctx: RequestContext = Depends(get_request_context),
) -> dict:
    """ARI grid: inventory plus resolved prices and restrictions per plan."""
    grid = get_ari_grid(
        ctx.property_id,
        date_from,
        date_to,
        room_type_ids=room_type_ids,
        rate_plan_codes=rate_plan_codes,
    )
    return camelize(grid)
