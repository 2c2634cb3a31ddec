"""Typed domain failures.

Every rejection carries a stable machine-readable `code` plus a human
readable `message`. The API layer maps them to `{code, message}` bodies
with `status_code`; nothing here knows about HTTP beyond that number.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    code = "DOMAIN_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ContextInvalid(DomainError):
    """Missing or malformed tenant/channel context."""

    code = "CONTEXT_INVALID"


class ValidationFailed(DomainError):
    code = "VALIDATION_ERROR"


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class RestrictionViolation(DomainError):
    """Stay rejected by a restriction (closed, CTA, CTD, min/max LOS)."""

    DATE_CLOSED = "DATE_CLOSED"
    CLOSED_TO_ARRIVAL = "CLOSED_TO_ARRIVAL"
    CLOSED_TO_DEPARTURE = "CLOSED_TO_DEPARTURE"
    BELOW_MIN_STAY = "BELOW_MIN_STAY"
    EXCEEDS_MAX_STAY = "EXCEEDS_MAX_STAY"

    code = "RESTRICTION_VIOLATION"


class NoAvailability(DomainError):
    """Inventory missing or sold out for at least one night."""

    code = "NO_AVAILABILITY"


class QuoteRejected(DomainError):
    """Quote reference unusable: unknown, tampered, expired or mismatched."""

    QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
    PRICING_MISMATCH = "PRICING_MISMATCH"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    QUOTE_MISMATCH = "QUOTE_MISMATCH"

    code = "QUOTE_REJECTED"


class IdempotencyConflict(DomainError):
    """Same key is being processed by another in-flight request."""

    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409
    retryable = True


class IdempotencyKeyMismatch(DomainError):
    """Key already used for a different method/path."""

    code = "IDEMPOTENCY_KEY_MISMATCH"
    status_code = 422


class ReservationStateError(DomainError):
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    CANNOT_CANCEL = "CANNOT_CANCEL"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    code = "INVALID_TRANSITION"


class AlreadyUndone(DomainError):
    code = "ALREADY_UNDONE"
    status_code = 409


class InventoryConsistencyError(DomainError):
    """Inventory state contradicts a reservation (e.g. release with booked=0)."""

    code = "INVENTORY_CONSISTENCY_ERROR"
    status_code = 500


class PaymentFailed(DomainError):
    """The payment gateway declined the authorization."""

    code = "PAYMENT_DECLINED"
    status_code = 402
