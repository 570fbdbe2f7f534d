"""Initial metering schema.

Creates accounts, billing accounts, stores, monthly usage counters, tracked
events and the webhook audit log.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
    )

    op.create_table(
        "billing_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("free_quota", sa.Integer(), nullable=False, server_default="100"),
        *_timestamps(),
        sa.CheckConstraint("free_quota >= 0", name="ck_billing_accounts_free_quota"),
    )

    op.create_table(
        "stores",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("marketplace_type", sa.String(32), nullable=False),
        sa.Column("store_name", sa.String(255), nullable=False),
        sa.Column("store_url", sa.String(1024), nullable=False),
        sa.Column("webhook_secret", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
    )
    op.create_index("ix_stores_user", "stores", ["user_id"])
    op.create_index("ix_stores_user_marketplace", "stores", ["user_id", "marketplace_type"])

    op.create_table(
        "usage_counters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_cost", sa.Numeric(12, 4), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_usage_counters_user_period"),
        sa.CheckConstraint("event_count >= 0", name="ck_usage_counters_event_count"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_usage_counters_month"),
    )
    op.create_index("ix_usage_counters_user_period", "usage_counters", ["user_id", "year", "month"])

    op.create_table(
        "tracked_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("order_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "source", "order_id", name="uq_tracked_events_user_source_order"),
    )
    op.create_index("ix_tracked_events_user_created", "tracked_events", ["user_id", "created_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("store_id", sa.String(64), nullable=True),
        sa.Column("marketplace_type", sa.String(32), nullable=False),
        sa.Column("raw_payload", sa.Text(), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("order_id", sa.String(255), nullable=True),
        sa.Column("ignored_reason", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_webhook_events_store_created", "webhook_events", ["store_id", "created_at"])
    op.create_index("ix_webhook_events_order", "webhook_events", ["marketplace_type", "order_id"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("tracked_events")
    op.drop_table("usage_counters")
    op.drop_table("stores")
    op.drop_table("billing_accounts")
    op.drop_table("users")
