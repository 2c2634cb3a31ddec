"""Shared test helpers (plain functions, not fixtures)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

from staybook.domain.quote import Quote, signed_terms
from staybook.infra.hashing import sign_pricing


def make_quote(
    *,
    property_id: str = "prop-1",
    room_type_code: str = "STD",
    rate_plan_code: str = "BAR",
    checkin: date = date(2026, 6, 1),
    checkout: date = date(2026, 6, 3),
    adults: int = 2,
    children: int = 0,
    total_cents: int = 40000,
    currency: str = "BRL",
    valid_until: datetime | None = None,
) -> Quote:
    """A correctly signed quote, as the quote engine would issue it."""
    quote_id = str(uuid.uuid4())
    valid_until = valid_until or datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=5)
    terms = signed_terms(
        quote_id=quote_id,
        property_id=property_id,
        room_type_code=room_type_code,
        rate_plan_code=rate_plan_code,
        checkin=checkin,
        checkout=checkout,
        adults=adults,
        children=children,
        currency=currency,
        total_cents=total_cents,
        valid_until=valid_until,
    )
    return Quote(
        quote_id=quote_id,
        pricing_signature=sign_pricing(terms),
        property_id=property_id,
        room_type_id="rt-std",
        room_type_code=room_type_code,
        room_type_name="Standard",
        rate_plan_code=rate_plan_code,
        rate_plan_name="Best available",
        checkin=checkin,
        checkout=checkout,
        adults=adults,
        children=children,
        currency=currency,
        total_cents=total_cents,
        valid_until=valid_until,
    )


def booking_payload(quote: Quote, **overrides) -> dict:
    """POST /bookings body for a quote."""
    body = {
        "quoteId": quote.quote_id,
        "pricingSignature": quote.pricing_signature,
        "stay": {
            "checkIn": quote.checkin.isoformat(),
            "checkOut": quote.checkout.isoformat(),
            "adults": quote.adults,
            "children": quote.children,
        },
        "roomTypeCode": quote.room_type_code,
        "ratePlanCode": quote.rate_plan_code,
        "primaryGuest": {
            "firstName": "Ana",
            "lastName": "Souza",
            "email": "ana.souza@example.com",
            "phone": "+55 11 98888-7777",
        },
    }
    body.update(overrides)
    return body
