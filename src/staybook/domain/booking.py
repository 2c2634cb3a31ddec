"""Booking engine - converts a signed quote into a confirmed reservation.

Two phases:

1. Pre-checks (no writes): resolve the room type, enforce restrictions,
   validate the quote, then authorize the optional payment. A rejected stay
   never reaches the payment gateway.
2. Commit, in one transaction: re-check restrictions, lock the stay's
   inventory rows FOR UPDATE in date order, find-or-create the guest, take
   one unit per night (guarded by available >= 1), insert the CONFIRMED
   reservation, write the audit entry and run the caller's commit hook (the
   idempotency guard stores its response there). Any failure rolls
   everything back and voids the payment authorization.

Row locks serialize concurrent commits on the same (room type, date), so
two requests for the last unit cannot both succeed.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import (
    NoAvailability,
    NotFound,
    PaymentFailed,
    QuoteRejected,
    ValidationFailed,
)
from staybook.domain.quote import Quote
from staybook.domain.quote_cache import QuoteCache
from staybook.domain.restrictions import check_stay, load_stay_restrictions
from staybook.infra.db import txn
from staybook.infra.repositories import (
    audit_repository,
    catalog_repository,
    guests_repository,
    inventory_repository,
    reservations_repository,
)
from staybook.infra.repositories.catalog_repository import RoomType
from staybook.infra.time import Clock, nights, utc_now
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context
from staybook.payments.gateway import PaymentAuthorization, PaymentDeclined, PaymentGateway

logger = get_logger(__name__)

STATUS_PENDING = "PENDING"
STATUS_CONFIRMED = "CONFIRMED"
STATUS_CHECKED_IN = "CHECKED_IN"
STATUS_CHECKED_OUT = "CHECKED_OUT"
STATUS_CANCELLED = "CANCELLED"

# No 0/O or 1/I, so locators survive being read over the phone
PNR_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PNR_LENGTH = 6
_PNR_ATTEMPTS = 5


@dataclass(frozen=True)
class BookingContext:
    property_id: str
    channel_code: str | None = None


@dataclass(frozen=True)
class GuestInfo:
    first_name: str
    last_name: str
    email: str
    phone: str | None = None


@dataclass(frozen=True)
class PaymentIntent:
    payment_method_id: str


@dataclass(frozen=True)
class BookingRequest:
    quote_id: str
    pricing_signature: str
    checkin: date
    checkout: date
    adults: int
    children: int
    room_type_code: str
    rate_plan_code: str
    guest: GuestInfo
    payment: PaymentIntent | None = None
    idempotency_key: str | None = None

    def validate(self) -> None:
        if self.checkout <= self.checkin:
            raise ValidationFailed("checkOut must be after checkIn")
        if self.adults < 1:
            raise ValidationFailed("at least one adult is required")
        if self.children < 0:
            raise ValidationFailed("children must be non-negative")


@dataclass(frozen=True)
class Booking:
    reservation_id: str
    pnr: str
    status: str
    total_cents: int
    currency: str
    checkin: date
    checkout: date
    room_type_code: str
    rate_plan_code: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "pnr": self.pnr,
            "status": self.status,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "check_in": self.checkin.isoformat(),
            "check_out": self.checkout.isoformat(),
            "room_type_code": self.room_type_code,
            "rate_plan_code": self.rate_plan_code,
        }


# Runs inside the commit transaction, after the reservation row is written
CommitHook = Callable[[PgCursor, Booking], None]


def generate_pnr() -> str:
    return "".join(secrets.choice(PNR_ALPHABET) for _ in range(PNR_LENGTH))


def validate_quote(
    context: BookingContext,
    request: BookingRequest,
    *,
    quote_cache: QuoteCache,
    now: datetime,
) -> Quote:
    """Check the quote reference against the cache.

    Raises:
        QuoteRejected: QUOTE_NOT_FOUND, PRICING_MISMATCH, QUOTE_EXPIRED or
            QUOTE_MISMATCH.
    """
    quote = quote_cache.find_quote(context.property_id, request.quote_id)
    if quote is None:
        raise QuoteRejected(
            "Quote not found or expired, request a new quote",
            code=QuoteRejected.QUOTE_NOT_FOUND,
        )
    if not quote.has_valid_signature(request.pricing_signature):
        raise QuoteRejected(
            "Pricing signature does not match the quote",
            code=QuoteRejected.PRICING_MISMATCH,
        )
    if now >= quote.valid_until:
        raise QuoteRejected("Quote has expired", code=QuoteRejected.QUOTE_EXPIRED)

    expected = (
        quote.room_type_code,
        quote.rate_plan_code,
        quote.checkin,
        quote.checkout,
        quote.adults,
        quote.children,
    )
    actual = (
        request.room_type_code,
        request.rate_plan_code,
        request.checkin,
        request.checkout,
        request.adults,
        request.children,
    )
    if expected != actual:
        raise QuoteRejected(
            "Booking does not match the quoted stay",
            code=QuoteRejected.QUOTE_MISMATCH,
        )
    return quote


def _resolve_and_check(cur: PgCursor, context: BookingContext, request: BookingRequest) -> RoomType:
    room_type = catalog_repository.get_room_type_by_code(
        cur, property_id=context.property_id, code=request.room_type_code
    )
    if room_type is None:
        raise NotFound(f"Room type {request.room_type_code} not found")

    restrictions = load_stay_restrictions(
        cur,
        property_id=context.property_id,
        room_type_id=room_type.id,
        rate_plan_code=request.rate_plan_code,
        checkin=request.checkin,
        checkout=request.checkout,
    )
    check_stay(restrictions, request.checkin, request.checkout)
    return room_type


def _commit(
    context: BookingContext,
    request: BookingRequest,
    quote: Quote,
    authorization: PaymentAuthorization | None,
    on_committed: CommitHook | None = None,
) -> Booking:
    property_id = context.property_id
    stay = list(nights(request.checkin, request.checkout))

    with txn() as cur:
        room_type = _resolve_and_check(cur, context, request)

        locked = inventory_repository.lock_nights(
            cur,
            property_id=property_id,
            room_type_id=room_type.id,
            checkin=request.checkin,
            checkout=request.checkout,
        )
        for day in stay:
            row = locked.get(day)
            if row is None or row["available"] <= 0:
                raise NoAvailability(
                    f"No availability for {room_type.code} on {day.isoformat()}"
                )

        guest_id, _ = guests_repository.find_or_create_guest(
            cur,
            property_id=property_id,
            first_name=request.guest.first_name,
            last_name=request.guest.last_name,
            email=request.guest.email,
            phone=request.guest.phone,
        )

        for day in stay:
            if not inventory_repository.book_night(
                cur, property_id=property_id, room_type_id=room_type.id, day=day
            ):
                raise NoAvailability(
                    f"No availability for {room_type.code} on {day.isoformat()}"
                )

        reservation_id = None
        for _ in range(_PNR_ATTEMPTS):
            pnr = generate_pnr()
            reservation_id = reservations_repository.insert_reservation(
                cur,
                property_id=property_id,
                pnr=pnr,
                status=STATUS_CONFIRMED,
                checkin=request.checkin,
                checkout=request.checkout,
                room_type_id=room_type.id,
                guest_id=guest_id,
                adults=request.adults,
                children=request.children,
                rate_plan_code=request.rate_plan_code,
                total_cents=quote.total_cents,
                currency=quote.currency,
                quote_id=quote.quote_id,
                channel_code=context.channel_code,
                payment_reference=authorization.authorization_id if authorization else None,
            )
            if reservation_id is not None:
                break
        if reservation_id is None:
            raise RuntimeError("could not allocate a unique PNR")

        audit_repository.write_audit(
            cur,
            property_id=property_id,
            event_type=audit_repository.BOOKING_CREATED,
            aggregate_type="reservation",
            aggregate_id=reservation_id,
            payload={
                "reservation_id": reservation_id,
                "pnr": pnr,
                "status": STATUS_CONFIRMED,
                "check_in": request.checkin.isoformat(),
                "check_out": request.checkout.isoformat(),
                "adults": request.adults,
                "children": request.children,
                "room_type_code": room_type.code,
                "rate_plan_code": request.rate_plan_code,
                "total_cents": quote.total_cents,
                "currency": quote.currency,
                "channel_code": context.channel_code,
            },
        )

        booking = Booking(
            reservation_id=reservation_id,
            pnr=pnr,
            status=STATUS_CONFIRMED,
            total_cents=quote.total_cents,
            currency=quote.currency,
            checkin=request.checkin,
            checkout=request.checkout,
            room_type_code=room_type.code,
            rate_plan_code=request.rate_plan_code,
        )
        if on_committed is not None:
            on_committed(cur, booking)

    return booking


def _void_quietly(
    gateway: PaymentGateway, authorization: PaymentAuthorization, idempotency_key: str
) -> None:
    """Void after a failed commit. The commit error is what the caller sees."""
    try:
        gateway.void(authorization.authorization_id, idempotency_key=idempotency_key)
    except Exception:
        logger.exception(
            "payment void failed",
            extra={"extra_fields": {"authorization_id": authorization.authorization_id}},
        )


def create_booking(
    context: BookingContext,
    request: BookingRequest,
    *,
    quote_cache: QuoteCache,
    payment_gateway: PaymentGateway | None = None,
    clock: Clock = utc_now,
    on_committed: CommitHook | None = None,
) -> Booking:
    """Validate, commit and return a CONFIRMED booking.

    Raises:
        ValidationFailed, NotFound, RestrictionViolation, QuoteRejected,
        NoAvailability: domain rejections, nothing is written.
    """
    request.validate()

    with txn() as cur:
        _resolve_and_check(cur, context, request)
    quote = validate_quote(context, request, quote_cache=quote_cache, now=clock())

    authorization = None
    auth_key = f"booking:{request.idempotency_key or request.quote_id}"
    if request.payment is not None and payment_gateway is not None:
        try:
            authorization = payment_gateway.authorize(
                amount_cents=quote.total_cents,
                currency=quote.currency,
                payment_method_id=request.payment.payment_method_id,
                idempotency_key=f"{auth_key}:authorize",
                metadata={"property_id": context.property_id, "quote_id": quote.quote_id},
            )
        except PaymentDeclined as exc:
            raise PaymentFailed(str(exc)) from exc

    try:
        booking = _commit(context, request, quote, authorization, on_committed=on_committed)
    except Exception:
        if authorization is not None:
            _void_quietly(payment_gateway, authorization, f"{auth_key}:void")
        raise

    logger.info(
        "booking created",
        extra={
            "extra_fields": safe_log_context(
                reservation_id=booking.reservation_id,
                room_type_code=booking.room_type_code,
                rate_plan_code=booking.rate_plan_code,
                checkin=booking.checkin,
                checkout=booking.checkout,
                total_cents=booking.total_cents,
                channel_code=context.channel_code,
                email=request.guest.email,
            )
        },
    )
    return booking


def list_bookings(property_id: str, **filters: Any) -> list[dict[str, Any]]:
    with txn() as cur:
        return reservations_repository.list_reservations(cur, property_id=property_id, **filters)
