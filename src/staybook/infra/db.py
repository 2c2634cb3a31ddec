"""Postgres access for staybook (psycopg2, raw SQL, no ORM).

Every unit that must be atomic (booking commit, bulk ARI update, idempotency
claim, ARI event apply) runs inside one txn(). Any exception raised inside
the block rolls the whole unit back, so partial inventory writes are never
visible. Read paths (quotes, calendar, matrix) open read-only transactions.
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

APPLICATION_NAME = "staybook"
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def _connect_kwargs(dsn: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "application_name": APPLICATION_NAME,
        "connect_timeout": int(
            os.environ.get("DB_CONNECT_TIMEOUT_SECONDS", DEFAULT_CONNECT_TIMEOUT_SECONDS)
        ),
    }
    # Managed deployments keep the password out of DATABASE_URL
    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        kwargs["password"] = db_password
    return kwargs


def get_conn() -> PgConnection:
    """Open a new connection to DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn, **_connect_kwargs(dsn))


@contextmanager
def txn(conn: PgConnection | None = None, *, read_only: bool = False) -> Iterator[PgCursor]:
    """One transaction: commit on clean exit, roll back on any exception.

    A connection opened here is closed on exit; a caller-supplied one is
    left open.

    Example:
        with txn() as cur:
            cur.execute("UPDATE inventory SET ... WHERE ...", (...))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            if read_only:
                cur.execute("SET TRANSACTION READ ONLY")
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row (None if no results)."""
    cur.execute(query, params)
    return cur.fetchone()
