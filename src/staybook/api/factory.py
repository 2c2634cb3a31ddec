"""FastAPI application factory."""

from __future__ import annotations

import os

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from staybook.api.context import HOTEL_ID_HEADER, is_valid_identifier
from staybook.api.schemas import validation_message
from staybook.domain.errors import DomainError, ValidationFailed
from staybook.domain.quote_cache import QuoteCache
from staybook.infra.time import Clock, utc_now
from staybook.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    reset_property_id,
    set_correlation_id,
    set_property_id,
)
from staybook.observability.logging import get_logger
from staybook.payments.gateway import PaymentGateway, StripePaymentGateway

from .routes import ari, bookings, health, inventory, quotes

logger = get_logger(__name__)


def _default_payment_gateway() -> PaymentGateway | None:
    secret_key = os.environ.get("STRIPE_SECRET_KEY")
    if not secret_key:
        return None
    return StripePaymentGateway(secret_key)


def create_app(
    *,
    quote_cache: QuoteCache | None = None,
    clock: Clock | None = None,
    payment_gateway: PaymentGateway | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        quote_cache: Process-wide quote cache. Built from QUOTE_CACHE_* env
            vars when omitted.
        clock: Time source for quote validity. Defaults to UTC wall clock.
        payment_gateway: Authorizes booking payments. Defaults to Stripe when
            STRIPE_SECRET_KEY is set, otherwise bookings carry no payment.

    Returns:
        Configured FastAPI application.
    """
    clock = clock or utc_now

    app = FastAPI(
        title="Staybook",
        docs_url=None,
        redoc_url=None,
    )
    app.state.clock = clock
    app.state.quote_cache = quote_cache if quote_cache is not None else QuoteCache.from_env(clock)
    app.state.payment_gateway = (
        payment_gateway if payment_gateway is not None else _default_payment_gateway()
    )

    # Correlation ID + tenant middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        hotel_id = request.headers.get(HOTEL_ID_HEADER)
        property_token = set_property_id(hotel_id if is_valid_identifier(hotel_id) else "")
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_property_id(property_token)
            reset_correlation_id(token)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "domain error",
                extra={"extra_fields": {"code": exc.code, "path": request.url.path}},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        err = ValidationFailed(validation_message(exc))
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled error",
            extra={"extra_fields": {"path": request.url.path, "error_type": type(exc).__name__}},
        )
        return JSONResponse(
            status_code=500,
            content={"code": "INTERNAL_ERROR", "message": "Internal server error"},
        )

    app.include_router(health.router)
    app.include_router(quotes.router)
    app.include_router(bookings.router)
    app.include_router(ari.router)
    app.include_router(inventory.router)

    return app
