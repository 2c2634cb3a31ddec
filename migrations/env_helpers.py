"""Database URL resolution for Alembic.

Kept apart from env.py so it can be tested without an alembic context.
DATABASE_URL may be a URL or a libpq key=value DSN; the password may be
supplied separately through DB_PASSWORD.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL, make_url

_DRIVER = "postgresql+psycopg2"


def _libpq_dsn_to_url(dsn: str) -> URL:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A socket directory host (e.g. /cloudsql/...) is passed as a query
    parameter since it cannot sit in the authority part of a URL.
    """
    tokens = parse_dsn(dsn)
    host = tokens.get("host", "localhost")
    query: dict[str, str] = {}
    url_host: str | None = host
    port: int | None = int(tokens.get("port", "5432"))

    if host.startswith("/"):
        query["host"] = host
        url_host = None
        port = None

    return URL.create(
        _DRIVER,
        username=tokens.get("user") or None,
        password=tokens.get("password") or None,
        host=url_host,
        port=port,
        database=tokens.get("dbname") or None,
        query=query,
    )


def resolve_database_url() -> str:
    """SQLAlchemy URL for DATABASE_URL, with DB_PASSWORD filled in if absent."""
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" in raw:
        url = make_url(raw.replace("postgres://", "postgresql://", 1))
        url = url.set(drivername=_DRIVER)
    else:
        url = _libpq_dsn_to_url(raw)

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not url.password:
        url = url.set(password=db_password)

    return url.render_as_string(hide_password=False)
