"""Alembic environment for the staybook schema.

Revisions execute plain SQL files from migrations/sql, so there is no
SQLAlchemy metadata to compare against and autogenerate is not used.
Each revision commits on its own: a failure leaves the database at the
last fully applied revision.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

sys.path.insert(0, os.path.dirname(__file__))

from env_helpers import resolve_database_url  # noqa: E402

MIGRATIONS_APPLICATION_NAME = "staybook-migrations"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_offline() -> None:
    """Render the SQL to stdout (alembic upgrade --sql)."""
    context.configure(
        url=resolve_database_url(),
        target_metadata=None,
        literal_binds=True,
        transaction_per_migration=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    options = dict(config.get_section(config.config_ini_section) or {})
    options["sqlalchemy.url"] = resolve_database_url()
    engine = engine_from_config(
        options,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args={"application_name": MIGRATIONS_APPLICATION_NAME},
    )

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=None,
            transaction_per_migration=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
