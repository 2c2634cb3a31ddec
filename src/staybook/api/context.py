"""Request context: tenant, channel and request id from headers.

Every route is scoped to the property named by X-Hotel-Id. Requests coming
from the DISTRIBUTION domain (channel managers, OTAs) must also name their
channel; missing or malformed context is always a 400 CONTEXT_INVALID.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Mapping

from fastapi import Depends, Request

from staybook.domain.errors import ContextInvalid

HOTEL_ID_HEADER = "X-Hotel-Id"
REQUEST_ID_HEADER = "X-Request-Id"
DOMAIN_HEADER = "X-Domain"
CHANNEL_CODE_HEADER = "X-Channel-Code"

DOMAIN_PROPERTY = "PROPERTY"
DOMAIN_DISTRIBUTION = "DISTRIBUTION"
DOMAINS = (DOMAIN_PROPERTY, DOMAIN_DISTRIBUTION)

_IDENTIFIER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:\-]{0,63}$")


@dataclass(frozen=True)
class RequestContext:
    property_id: str
    request_id: str
    domain: str = DOMAIN_PROPERTY
    channel_code: str | None = None


def is_valid_identifier(value: str | None) -> bool:
    return bool(value) and _IDENTIFIER.match(value) is not None


def parse_request_context(headers: Mapping[str, str]) -> RequestContext:
    """Build the context from request headers.

    Raises:
        ContextInvalid: missing/malformed hotel id, unknown domain, or a
            DISTRIBUTION request without a channel code.
    """
    property_id = (headers.get(HOTEL_ID_HEADER) or "").strip()
    if not property_id:
        raise ContextInvalid(f"{HOTEL_ID_HEADER} header is required")
    if not is_valid_identifier(property_id):
        raise ContextInvalid(f"{HOTEL_ID_HEADER} header is malformed")

    domain = (headers.get(DOMAIN_HEADER) or DOMAIN_PROPERTY).strip().upper()
    if domain not in DOMAINS:
        raise ContextInvalid(f"{DOMAIN_HEADER} must be one of {', '.join(DOMAINS)}")

    channel_code = (headers.get(CHANNEL_CODE_HEADER) or "").strip() or None
    if channel_code is not None and not is_valid_identifier(channel_code):
        raise ContextInvalid(f"{CHANNEL_CODE_HEADER} header is malformed")
    if domain == DOMAIN_DISTRIBUTION and channel_code is None:
        raise ContextInvalid(f"{CHANNEL_CODE_HEADER} header is required for {DOMAIN_DISTRIBUTION}")

    request_id = (headers.get(REQUEST_ID_HEADER) or "").strip() or str(uuid.uuid4())

    return RequestContext(
        property_id=property_id,
        request_id=request_id,
        domain=domain,
        channel_code=channel_code,
    )


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency for property-scoped routes.

    Usage:
        @router.get("/something")
        def endpoint(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    return parse_request_context(request.headers)


def require_channel_context(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    """Like get_request_context, but the channel code is mandatory."""
    if ctx.channel_code is None:
        raise ContextInvalid(f"{CHANNEL_CODE_HEADER} header is required")
    return ctx
