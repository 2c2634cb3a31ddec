"""Initial ARI and booking schema.

Creates properties, room types, rate plans, inventory, rates, restrictions,
guests, reservations, ARI events, idempotency keys and audit logs.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_initial.sql"

_TABLES = (
    "audit_logs",
    "idempotency_keys",
    "ari_events",
    "reservations",
    "guests",
    "restrictions",
    "rates",
    "inventory",
    "rate_plans",
    "room_types",
    "properties",
)


def upgrade() -> None:
    op.get_bind().exec_driver_sql(_SQL_FILE.read_text())


def downgrade() -> None:
    for table in _TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
