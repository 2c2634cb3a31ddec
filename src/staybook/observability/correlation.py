"""Request-scoped context: correlation id and tenant (property) id.

Both values live in ContextVars so they follow the request into the
threadpool worker that runs a sync route and into every log line.
"""

import uuid
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
property_id_var: ContextVar[str] = ContextVar("property_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


def get_property_id() -> str:
    return property_id_var.get()


def set_property_id(property_id: str) -> Token[str]:
    return property_id_var.set(property_id)


def reset_property_id(token: Token[str]) -> None:
    property_id_var.reset(token)
