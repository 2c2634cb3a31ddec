"""Process-scoped components, built once in create_app and injected."""

from __future__ import annotations

from fastapi import Request

from staybook.domain.quote_cache import QuoteCache
from staybook.infra.time import Clock
from staybook.payments.gateway import PaymentGateway


def get_quote_cache(request: Request) -> QuoteCache:
    return request.app.state.quote_cache


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_payment_gateway(request: Request) -> PaymentGateway | None:
    return request.app.state.payment_gateway
