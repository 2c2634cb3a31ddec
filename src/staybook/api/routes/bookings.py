"""Booking endpoints.

POST /bookings commits a quote into a CONFIRMED reservation. It is wrapped
in the idempotency guard when the client sends a key (Idempotency-Key
header or `idempotencyKey` in the body): retries replay the first outcome,
including 4xx rejections, and never create a second reservation.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import EmailStr, Field, ValidationError

from staybook.api.context import RequestContext, get_request_context
from staybook.api.dependencies import get_clock, get_payment_gateway, get_quote_cache
from staybook.api.schemas import CamelModel, camelize, validation_message
from staybook.domain.booking import (
    Booking,
    BookingContext,
    BookingRequest,
    CommitHook,
    GuestInfo,
    PaymentIntent,
    create_booking,
    list_bookings,
)
from staybook.domain.cancellation import cancel_reservation, transition_status
from staybook.domain.errors import DomainError, IdempotencyConflict, ValidationFailed
from staybook.domain.idempotency import IdempotencyClaim, with_idempotency
from staybook.domain.quote_cache import QuoteCache
from staybook.infra.time import Clock
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context
from staybook.payments.gateway import PaymentGateway

logger = get_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
REPLAYED_HEADER = "Idempotent-Replayed"


# ── Schemas ───────────────────────────────────────────────


class BookingStay(CamelModel):
    check_in: date
    check_out: date
    adults: int = Field(ge=1, le=20)
    children: int = Field(default=0, ge=0, le=20)


class PrimaryGuest(CamelModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=32)


class PaymentBody(CamelModel):
    payment_method_id: str = Field(min_length=1)


class CreateBookingBody(CamelModel):
    idempotency_key: str | None = Field(default=None, max_length=128)
    quote_id: str = Field(min_length=1)
    pricing_signature: str = Field(min_length=1)
    stay: BookingStay
    room_type_code: str = Field(min_length=1)
    rate_plan_code: str = Field(min_length=1)
    primary_guest: PrimaryGuest
    payment: PaymentBody | None = None


class CancelBookingBody(CamelModel):
    reason: str | None = Field(default=None, max_length=500)


class StatusBody(CamelModel):
    status: Literal["CONFIRMED", "CHECKED_IN", "CHECKED_OUT", "CANCELLED"]


# ── POST /bookings ────────────────────────────────────────


def _booking_response(booking: Booking) -> dict[str, Any]:
    return {"booking": camelize(booking.to_dict())}


def _completion_hook(claim: IdempotencyClaim) -> CommitHook:
    def store(cur, booking: Booking) -> None:
        claim.complete(cur, 201, _booking_response(booking))

    return store


def _run_create_booking(
    ctx: RequestContext,
    raw: dict[str, Any],
    key: str | None,
    claim: IdempotencyClaim | None,
    *,
    quote_cache: QuoteCache,
    payment_gateway: PaymentGateway | None,
    clock: Clock,
) -> tuple[int, dict[str, Any]]:
    """Validate and commit. Domain rejections become (status, {code, message})
    so the idempotency guard can store them; a created booking stores its
    response through the claim inside the commit transaction.
    """
    on_committed = _completion_hook(claim) if claim is not None else None
    try:
        try:
            body = CreateBookingBody.model_validate(raw)
        except ValidationError as exc:
            raise ValidationFailed(validation_message(exc)) from exc

        request = BookingRequest(
            quote_id=body.quote_id,
            pricing_signature=body.pricing_signature,
            checkin=body.stay.check_in,
            checkout=body.stay.check_out,
            adults=body.stay.adults,
            children=body.stay.children,
            room_type_code=body.room_type_code,
            rate_plan_code=body.rate_plan_code,
            guest=GuestInfo(
                first_name=body.primary_guest.first_name,
                last_name=body.primary_guest.last_name,
                email=str(body.primary_guest.email),
                phone=body.primary_guest.phone,
            ),
            payment=PaymentIntent(body.payment.payment_method_id) if body.payment else None,
            idempotency_key=key,
        )
        booking = create_booking(
            BookingContext(property_id=ctx.property_id, channel_code=ctx.channel_code),
            request,
            quote_cache=quote_cache,
            payment_gateway=payment_gateway,
            clock=clock,
            on_committed=on_committed,
        )
    except DomainError as exc:
        # A lost claim means another owner is running this key
        if exc.status_code >= 500 or isinstance(exc, IdempotencyConflict):
            raise
        logger.info(
            "booking rejected",
            extra={"extra_fields": safe_log_context(code=exc.code, request_id=ctx.request_id)},
        )
        return exc.status_code, exc.to_dict()

    return 201, _booking_response(booking)


@router.post("", status_code=201)
def create_booking_endpoint(
    request: Request,
    raw: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    quote_cache: QuoteCache = Depends(get_quote_cache),
    payment_gateway: PaymentGateway | None = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
) -> JSONResponse:
    """Create a booking from a quote."""
    key = (
        request.headers.get(IDEMPOTENCY_KEY_HEADER)
        or raw.get("idempotencyKey")
        or raw.get("idempotency_key")
    )
    if key is not None and (not isinstance(key, str) or not key.strip() or len(key) > 128):
        raise ValidationFailed("idempotencyKey must be a non-empty string of at most 128 characters")

    def handler(claim: IdempotencyClaim | None) -> tuple[int, dict[str, Any]]:
        return _run_create_booking(
            ctx,
            raw,
            key,
            claim,
            quote_cache=quote_cache,
            payment_gateway=payment_gateway,
            clock=clock,
        )

    if key is None:
        status_code, body = handler(None)
        return JSONResponse(status_code=status_code, content=jsonable_encoder(body))

    result = with_idempotency(ctx.property_id, key, "POST", request.url.path, handler)
    headers = {REPLAYED_HEADER: "true"} if result.replayed else None
    return JSONResponse(
        status_code=result.status_code,
        content=jsonable_encoder(result.body),
        headers=headers,
    )


# ── GET /bookings ─────────────────────────────────────────


@router.get("")
def get_bookings(
    status: str | None = Query(default=None),
    check_in_from: date | None = Query(default=None, alias="checkInFrom"),
    check_in_to: date | None = Query(default=None, alias="checkInTo"),
    limit: int = Query(default=100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
) -> dict:
    """List reservations of the property, ordered by check-in."""
    rows = list_bookings(
        ctx.property_id,
        status=status,
        checkin_from=check_in_from,
        checkin_to=check_in_to,
        limit=limit,
    )
    return {"bookings": jsonable_encoder(camelize(rows))}


# ── POST /bookings/{reservation_id}/cancel ───────────────


@router.post("/{reservation_id}/cancel")
def cancel_booking(
    reservation_id: uuid.UUID,
    body: CancelBookingBody | None = None,
    ctx: RequestContext = Depends(get_request_context),
) -> dict:
    """Cancel a reservation and release its inventory."""
    result = cancel_reservation(
        ctx.property_id,
        str(reservation_id),
        reason=body.reason if body else None,
    )
    return {"booking": camelize(result)}


# ── POST /bookings/{reservation_id}/status ───────────────


@router.post("/{reservation_id}/status")
def change_booking_status(
    reservation_id: uuid.UUID,
    body: StatusBody,
    ctx: RequestContext = Depends(get_request_context),
) -> dict:
    """Move a reservation forward (PENDING → CONFIRMED → CHECKED_IN → CHECKED_OUT)."""
    result = transition_status(ctx.property_id, str(reservation_id), body.status)
    return {"booking": camelize(result)}
