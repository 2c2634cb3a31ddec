"""Idempotency guard - exactly-once execution of mutating requests.

Keyed by (property_id, idempotency_key):

- First use claims the key with an `in_progress` row (create-if-absent,
  committed before the handler runs). The claim carries a fresh claim_id.
- The claim holder runs the handler with its IdempotencyClaim. A handler
  that writes should call `claim.complete(cur, ...)` inside its own commit
  transaction, so the stored outcome and the mutation commit or roll back
  together. Outcomes the handler did not record (4xx rejections with no
  writes) are stored by the guard afterwards.
- Outcomes below 500 are replayed verbatim to every later caller; 5xx
  outcomes and exceptions drop the claim so the client can retry.
- A concurrent caller that finds the claim still in progress gets a
  retryable IDEMPOTENCY_CONFLICT. Claims older than the timeout are
  considered abandoned and may be taken over; the previous owner then
  fails to complete and its transaction rolls back.
- Reusing a key for a different method or path is rejected.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import IdempotencyConflict, IdempotencyKeyMismatch
from staybook.infra.db import txn
from staybook.infra.repositories import idempotency_repository
from staybook.infra.repositories.idempotency_repository import STATUS_COMPLETED
from staybook.observability.logging import get_logger
from staybook.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_CLAIM_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class IdempotentResponse:
    status_code: int
    body: Any
    replayed: bool = False


@dataclass
class IdempotencyClaim:
    """Ownership of one key for the duration of a handler run."""

    property_id: str
    key: str
    claim_id: str
    completed: bool = False

    def complete(self, cur: PgCursor, status_code: int, body: Any) -> None:
        """Store the outcome in the caller's transaction.

        Raises:
            IdempotencyConflict: The claim was taken over; the caller's
                transaction must roll back.
        """
        stored = idempotency_repository.complete(
            cur,
            property_id=self.property_id,
            key=self.key,
            claim_id=self.claim_id,
            response_code=status_code,
            response_body=body,
        )
        if not stored:
            logger.warning(
                "idempotency claim lost before completion",
                extra={"extra_fields": safe_log_context(status_code=status_code)},
            )
            raise IdempotencyConflict("A request with this idempotency key is in progress")
        self.completed = True


Handler = Callable[[IdempotencyClaim], tuple[int, Any]]


def _claim_timeout() -> int:
    return int(
        os.environ.get("IDEMPOTENCY_CLAIM_TIMEOUT_SECONDS", DEFAULT_CLAIM_TIMEOUT_SECONDS)
    )


def _acquire(
    property_id: str,
    key: str,
    method: str,
    path: str,
    timeout_seconds: int,
) -> IdempotencyClaim | IdempotentResponse:
    """Claim the key, or return the stored response to replay."""
    claim = IdempotencyClaim(property_id=property_id, key=key, claim_id=str(uuid.uuid4()))
    with txn() as cur:
        if idempotency_repository.try_claim(
            cur,
            property_id=property_id,
            key=key,
            method=method,
            path=path,
            claim_id=claim.claim_id,
        ):
            return claim

        record = idempotency_repository.get_record(cur, property_id=property_id, key=key)
        if record is None:
            # Claim was released between our insert and read
            raise IdempotencyConflict("Request with this key is being retried, try again")

        if (record["method"], record["path"]) != (method, path):
            raise IdempotencyKeyMismatch(
                "Idempotency key was already used for a different request"
            )

        if record["status"] == STATUS_COMPLETED:
            return IdempotentResponse(
                status_code=record["response_code"],
                body=record["response_body"],
                replayed=True,
            )

        if idempotency_repository.take_over_stale(
            cur,
            property_id=property_id,
            key=key,
            claim_id=claim.claim_id,
            timeout_seconds=timeout_seconds,
        ):
            logger.warning(
                "stale idempotency claim taken over",
                extra={"extra_fields": safe_log_context(path=path)},
            )
            return claim

    raise IdempotencyConflict("A request with this idempotency key is in progress")


def _release(claim: IdempotencyClaim) -> None:
    with txn() as cur:
        idempotency_repository.release(
            cur, property_id=claim.property_id, key=claim.key, claim_id=claim.claim_id
        )


def with_idempotency(
    property_id: str,
    key: str,
    method: str,
    path: str,
    handler: Handler,
    *,
    claim_timeout_seconds: int | None = None,
) -> IdempotentResponse:
    """Run handler at most once per key and replay its stored outcome.

    The handler receives the claim and returns (status_code, json_body).
    Domain rejections should be turned into 4xx results by the handler so
    they are stored and replayed.
    """
    timeout = claim_timeout_seconds if claim_timeout_seconds is not None else _claim_timeout()

    acquired = _acquire(property_id, key, method, path, timeout)
    if isinstance(acquired, IdempotentResponse):
        logger.info(
            "idempotent replay",
            extra={
                "extra_fields": safe_log_context(
                    method=method, path=path, status_code=acquired.status_code
                )
            },
        )
        return acquired

    claim = acquired
    try:
        status_code, body = handler(claim)
    except Exception:
        # No-op once the outcome has committed
        _release(claim)
        raise

    if claim.completed:
        return IdempotentResponse(status_code=status_code, body=body)

    if status_code >= 500:
        _release(claim)
    else:
        with txn() as cur:
            claim.complete(cur, status_code, body)

    return IdempotentResponse(status_code=status_code, body=body)
