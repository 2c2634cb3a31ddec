"""Quote endpoint.

POST /quotes prices a stay for every offerable room type and rate plan.
Identical requests within the cache TTL are answered from memory
(`cached: true`) without touching the database.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import Field

from staybook.api.context import RequestContext, get_request_context
from staybook.api.dependencies import get_quote_cache
from staybook.api.schemas import CamelModel, camelize
from staybook.domain.quote import QuoteRequest, generate_quotes
from staybook.domain.quote_cache import QuoteCache

router = APIRouter(prefix="/quotes", tags=["quotes"])


# ── Schemas ───────────────────────────────────────────────


class StayDates(CamelModel):
    check_in: date
    check_out: date


class Guests(CamelModel):
    adults: int = Field(ge=1, le=20)
    children: int = Field(default=0, ge=0, le=20)
    children_ages: list[int] | None = None


class QuoteRequestBody(CamelModel):
    stay: StayDates
    guests: Guests
    rate_plan_code: str | None = None
    room_type_codes: list[str] | None = None


# ── POST /quotes ──────────────────────────────────────────


@router.post("")
def create_quotes(
    body: QuoteRequestBody,
    ctx: RequestContext = Depends(get_request_context),
    cache: QuoteCache = Depends(get_quote_cache),
) -> dict:
    """Generate (or replay cached) quotes for a stay."""
    request = QuoteRequest(
        property_id=ctx.property_id,
        checkin=body.stay.check_in,
        checkout=body.stay.check_out,
        adults=body.guests.adults,
        children=body.guests.children,
        room_type_codes=tuple(body.room_type_codes) if body.room_type_codes else None,
        rate_plan_code=body.rate_plan_code,
        children_ages=tuple(body.guests.children_ages) if body.guests.children_ages else None,
    )
    result = generate_quotes(request, cache=cache)
    return {
        "quotes": [camelize(q.to_dict()) for q in result.quotes],
        "cached": result.cached,
    }
