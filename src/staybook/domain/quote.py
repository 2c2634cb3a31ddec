"""Quote engine.

Prices a stay request against inventory, rates and restrictions and issues
short-lived signed quotes. Nothing is written to the database; results are
kept in the injected QuoteCache.

A room type is offerable only if:
- it fits the party (max adults / max children)
- there is an inventory row for every night, each with available >= 1
- its restrictions accept the stay (same rules as booking)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.domain import rate_plans as pricing
from staybook.domain.errors import NotFound, ValidationFailed
from staybook.domain.quote_cache import QuoteCache, quote_cache_key
from staybook.domain.rate_plans import RatePlan
from staybook.domain.restrictions import merge_rows, stay_is_allowed
from staybook.infra.db import txn
from staybook.infra.hashing import sign_pricing, verify_pricing
from staybook.infra.property_settings import get_property_settings
from staybook.infra.repositories import (
    catalog_repository,
    inventory_repository,
    restrictions_repository,
)
from staybook.infra.repositories.restrictions_repository import BASE_RATE_PLAN_CODE
from staybook.infra.time import nights
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_CANCELLATION_POLICY = "FREE_CANCELLATION_UNTIL_CHECKIN"

# Priced from inventory when a property has no rate plans configured
IMPLICIT_BASE_PLAN = RatePlan(id=BASE_RATE_PLAN_CODE, code=BASE_RATE_PLAN_CODE, name="Base rate")


@dataclass(frozen=True)
class QuoteRequest:
    property_id: str
    checkin: date
    checkout: date
    adults: int
    children: int = 0
    room_type_codes: tuple[str, ...] | None = None
    rate_plan_code: str | None = None
    children_ages: tuple[int, ...] | None = None

    def validate(self) -> None:
        if self.checkout <= self.checkin:
            raise ValidationFailed("checkOut must be after checkIn")
        if self.adults < 1:
            raise ValidationFailed("at least one adult is required")
        if self.children < 0:
            raise ValidationFailed("children must be non-negative")
        if self.children_ages is not None:
            if len(self.children_ages) > self.children:
                raise ValidationFailed("more childrenAges than children")
            if any(age < 0 for age in self.children_ages):
                raise ValidationFailed("childrenAges must be non-negative")

    def cache_key(self) -> str:
        return quote_cache_key(
            self.property_id,
            self.checkin,
            self.checkout,
            self.adults,
            self.children,
            self.room_type_codes,
            self.children_ages,
        )


@dataclass(frozen=True)
class NightPrice:
    date: date
    price_cents: int


@dataclass(frozen=True)
class Quote:
    quote_id: str
    pricing_signature: str
    property_id: str
    room_type_id: str
    room_type_code: str
    room_type_name: str
    rate_plan_code: str
    rate_plan_name: str
    checkin: date
    checkout: date
    adults: int
    children: int
    currency: str
    total_cents: int
    valid_until: datetime
    nightly: tuple[NightPrice, ...] = field(default_factory=tuple)
    cancellation_policy: str = DEFAULT_CANCELLATION_POLICY

    def signed_terms(self) -> dict[str, Any]:
        """The binding terms covered by the pricing signature."""
        return signed_terms(
            quote_id=self.quote_id,
            property_id=self.property_id,
            room_type_code=self.room_type_code,
            rate_plan_code=self.rate_plan_code,
            checkin=self.checkin,
            checkout=self.checkout,
            adults=self.adults,
            children=self.children,
            currency=self.currency,
            total_cents=self.total_cents,
            valid_until=self.valid_until,
        )

    def has_valid_signature(self, signature: str) -> bool:
        return verify_pricing(self.signed_terms(), signature)

    def to_dict(self) -> dict[str, Any]:
        return {
            "quote_id": self.quote_id,
            "pricing_signature": self.pricing_signature,
            "room_type_code": self.room_type_code,
            "room_type_name": self.room_type_name,
            "rate_plan_code": self.rate_plan_code,
            "rate_plan_name": self.rate_plan_name,
            "check_in": self.checkin.isoformat(),
            "check_out": self.checkout.isoformat(),
            "adults": self.adults,
            "children": self.children,
            "currency": self.currency,
            "total_cents": self.total_cents,
            "nightly": [
                {"date": n.date.isoformat(), "price_cents": n.price_cents}
                for n in self.nightly
            ],
            "cancellation_policy": self.cancellation_policy,
            "valid_until": self.valid_until.isoformat(),
        }


@dataclass(frozen=True)
class QuoteResult:
    quotes: list[Quote]
    cached: bool


def signed_terms(
    *,
    quote_id: str,
    property_id: str,
    room_type_code: str,
    rate_plan_code: str,
    checkin: date,
    checkout: date,
    adults: int,
    children: int,
    currency: str,
    total_cents: int,
    valid_until: datetime,
) -> dict[str, Any]:
    return {
        "quote_id": quote_id,
        "property_id": property_id,
        "room_type_code": room_type_code,
        "rate_plan_code": rate_plan_code,
        "checkin": checkin.isoformat(),
        "checkout": checkout.isoformat(),
        "adults": adults,
        "children": children,
        "currency": currency,
        "total_cents": total_cents,
        "valid_until": valid_until.isoformat(),
    }


def compute_quotes(
    cur: PgCursor,
    request: QuoteRequest,
    *,
    now: datetime,
    validity: timedelta,
) -> list[Quote]:
    """Price every offerable (room type, rate plan) for the request."""
    settings = get_property_settings(cur, request.property_id)
    if settings is None:
        raise NotFound(f"Property {request.property_id} not found")

    room_types = [
        rt
        for rt in catalog_repository.list_room_types(
            cur, property_id=request.property_id, codes=request.room_type_codes
        )
        if rt.fits(request.adults, request.children)
    ]
    if not room_types:
        return []

    plans = catalog_repository.list_rate_plans(cur, property_id=request.property_id)
    if not plans:
        plans = [IMPLICIT_BASE_PLAN]
    plans_by_code = {p.code: p for p in plans}

    stay = list(nights(request.checkin, request.checkout))
    room_type_ids = [rt.id for rt in room_types]
    inventory = inventory_repository.fetch_range(
        cur,
        property_id=request.property_id,
        room_type_ids=room_type_ids,
        start=request.checkin,
        end=request.checkout,
    )
    rates = catalog_repository.fetch_rates(
        cur,
        property_id=request.property_id,
        room_type_ids=room_type_ids,
        start=request.checkin,
        end=request.checkout,
    )
    restriction_rows = restrictions_repository.fetch_range(
        cur,
        property_id=request.property_id,
        room_type_ids=room_type_ids,
        rate_plan_codes={BASE_RATE_PLAN_CODE, *plans_by_code},
        start=request.checkin,
        end=request.checkout,
    )

    quotes: list[Quote] = []
    for room_type in room_types:
        rows = [inventory.get((room_type.id, day)) for day in stay]
        # Incomplete data is not offerable
        if any(row is None for row in rows):
            continue
        if any(row["available"] <= 0 for row in rows):
            continue

        for plan in plans:
            restrictions = _restrictions_for(restriction_rows, room_type.id, plan.code)
            if not stay_is_allowed(restrictions, request.checkin, request.checkout):
                continue

            nightly: list[NightPrice] = []
            for day, row in zip(stay, rows):
                base = pricing.resolve_base_price(
                    plan.code,
                    room_type_id=room_type.id,
                    day=day,
                    plans_by_code=plans_by_code,
                    rates=rates,
                    inventory_price_cents=row["price_cents"],
                )
                if base is None:
                    break
                price = pricing.nightly_price(
                    base,
                    plan,
                    adults=request.adults,
                    children=request.children,
                    children_ages=request.children_ages,
                )
                nightly.append(NightPrice(date=day, price_cents=price))
            else:
                quotes.append(
                    _issue_quote(
                        request,
                        room_type=room_type,
                        plan=plan,
                        currency=settings.currency,
                        nightly=nightly,
                        valid_until=now + validity,
                    )
                )

    return quotes


def _restrictions_for(
    rows: dict[tuple[str, date, str], dict[str, Any]],
    room_type_id: str,
    rate_plan_code: str,
) -> dict[date, dict[str, Any]]:
    by_date: dict[date, list[dict[str, Any]]] = {}
    for (rt_id, day, code), row in rows.items():
        if rt_id == room_type_id and code in (BASE_RATE_PLAN_CODE, rate_plan_code):
            by_date.setdefault(day, []).append(row)
    return {day: merge_rows(day_rows) for day, day_rows in by_date.items()}


def _issue_quote(
    request: QuoteRequest,
    *,
    room_type: catalog_repository.RoomType,
    plan: RatePlan,
    currency: str,
    nightly: list[NightPrice],
    valid_until: datetime,
) -> Quote:
    quote_id = str(uuid.uuid4())
    total_cents = sum(n.price_cents for n in nightly)
    terms = signed_terms(
        quote_id=quote_id,
        property_id=request.property_id,
        room_type_code=room_type.code,
        rate_plan_code=plan.code,
        checkin=request.checkin,
        checkout=request.checkout,
        adults=request.adults,
        children=request.children,
        currency=currency,
        total_cents=total_cents,
        valid_until=valid_until,
    )
    return Quote(
        quote_id=quote_id,
        pricing_signature=sign_pricing(terms),
        property_id=request.property_id,
        room_type_id=room_type.id,
        room_type_code=room_type.code,
        room_type_name=room_type.name,
        rate_plan_code=plan.code,
        rate_plan_name=plan.name,
        checkin=request.checkin,
        checkout=request.checkout,
        adults=request.adults,
        children=request.children,
        currency=currency,
        total_cents=total_cents,
        valid_until=valid_until,
        nightly=tuple(nightly),
        cancellation_policy=plan.cancellation_policy or DEFAULT_CANCELLATION_POLICY,
    )


def generate_quotes(request: QuoteRequest, *, cache: QuoteCache) -> QuoteResult:
    """Return quotes for a stay, served from the cache while fresh.

    Never raises for "no availability": an empty list is a valid answer.
    """
    request.validate()
    key = request.cache_key()

    quotes = cache.get(key)
    cached = quotes is not None
    if quotes is None:
        with txn(read_only=True) as cur:
            quotes = compute_quotes(cur, request, now=cache.now(), validity=cache.ttl)
        cache.set(key, request.property_id, quotes)

    if request.rate_plan_code is not None:
        quotes = [q for q in quotes if q.rate_plan_code == request.rate_plan_code]

    logger.info(
        "quotes generated",
        extra={
            "extra_fields": safe_log_context(
                checkin=request.checkin,
                checkout=request.checkout,
                adults=request.adults,
                children=request.children,
                quotes=len(quotes),
                cached=cached,
            )
        },
    )
    return QuoteResult(quotes=quotes, cached=cached)
