"""Payment gateway contract used by the booking engine.

The booking engine only needs two calls: place an authorization hold for the
stay total before committing, and void it if the commit fails. Capture and
refunds belong to the payments surface, not here.

StripePaymentGateway implements the contract with manual-capture
PaymentIntents. Domain code never imports stripe directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

import stripe

from staybook.observability.logging import get_logger

logger = get_logger(__name__)


class PaymentDeclined(Exception):
    """The gateway refused the authorization."""

    def __init__(self, message: str, decline_code: str | None = None) -> None:
        super().__init__(message)
        self.decline_code = decline_code


@dataclass(frozen=True)
class PaymentAuthorization:
    authorization_id: str
    status: str
    amount_cents: int
    currency: str


class PaymentGateway(Protocol):
    def authorize(
        self,
        *,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization: ...

    def void(self, authorization_id: str, *, idempotency_key: str) -> None: ...


class StripePaymentGateway:
    """Manual-capture PaymentIntents through the Stripe SDK.

    Usage:
        gateway = StripePaymentGateway()  # reads STRIPE_SECRET_KEY from env
        auth = gateway.authorize(
            amount_cents=45000,
            currency="BRL",
            payment_method_id="pm_card_visa",
            idempotency_key="booking:abc123:authorize",
        )
    """

    def __init__(self, api_key: str | None = None) -> None:
        """Initialize the gateway.

        Raises:
            RuntimeError: If no API key is provided or found in environment.
        """
        api_key = api_key or os.environ.get("STRIPE_SECRET_KEY")
        if not api_key:
            raise RuntimeError(
                "Stripe API key not provided. "
                "Set STRIPE_SECRET_KEY or pass api_key parameter."
            )
        self._client = stripe.StripeClient(api_key)

    def authorize(
        self,
        *,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        params = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "payment_method": payment_method_id,
            "capture_method": "manual",
            "confirm": True,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        }
        if metadata:
            params["metadata"] = metadata

        try:
            intent = self._client.v1.payment_intents.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            )
        except stripe.CardError as exc:
            raise PaymentDeclined(exc.user_message or "Card declined", exc.code) from exc

        # Log only IDs, never full payload
        logger.info(
            "payment authorized",
            extra={"extra_fields": {"payment_intent_id": intent.id, "status": intent.status}},
        )
        if intent.status != "requires_capture":
            # Do not leave a live intent behind for a booking that will not exist
            try:
                self.void(intent.id, idempotency_key=f"{idempotency_key}:void")
            except stripe.StripeError:
                logger.exception(
                    "payment void failed",
                    extra={"extra_fields": {"payment_intent_id": intent.id}},
                )
            raise PaymentDeclined(f"Authorization not completed (status {intent.status})")

        return PaymentAuthorization(
            authorization_id=intent.id,
            status=intent.status,
            amount_cents=amount_cents,
            currency=currency,
        )

    def void(self, authorization_id: str, *, idempotency_key: str) -> None:
        self._client.v1.payment_intents.cancel(
            authorization_id,
            options={"idempotency_key": idempotency_key},
        )
        logger.info(
            "payment authorization voided",
            extra={"extra_fields": {"payment_intent_id": authorization_id}},
        )
