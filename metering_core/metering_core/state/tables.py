"""SQLAlchemy 2.0 ORM table definitions for the metering state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.

Uniqueness constraints double as concurrency guards: the usage counter and
billing account upserts, and the webhook deduplication, all rely on them
rather than on application-level locking.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all metering tables."""


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class UserTable(Base):
    """Merchant accounts mirrored from the identity provider.

    The metering core only reads ``status``; the row is created and mutated
    by the (external) authentication service.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class BillingAccountTable(Base):
    """Billing activation state and free quota per user.

    At most one row per user; created lazily by the billing gate.
    """

    __tablename__ = "billing_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    free_quota: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (CheckConstraint("free_quota >= 0", name="ck_billing_accounts_free_quota"),)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class StoreTable(Base):
    """A merchant's connected storefront and its webhook secret."""

    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    marketplace_type: Mapped[str] = mapped_column(String(32), nullable=False)
    store_name: Mapped[str] = mapped_column(String(255), nullable=False)
    store_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    webhook_secret: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_stores_user", "user_id"),
        Index("ix_stores_user_marketplace", "user_id", "marketplace_type"),
    )


# ---------------------------------------------------------------------------
# Usage metering
# ---------------------------------------------------------------------------


class UsageCounterTable(Base):
    """Tracked-event count and estimated cost per user per calendar month.

    ``event_count`` only ever moves up within a period; rows are never
    deleted.
    """

    __tablename__ = "usage_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_usage_counters_user_period"),
        CheckConstraint("event_count >= 0", name="ck_usage_counters_event_count"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_usage_counters_month"),
        Index("ix_usage_counters_user_period", "user_id", "year", "month"),
    )


class TrackedEventTable(Base):
    """One billable action, either from a webhook or the manual tracking API.

    ``(user_id, source, order_id)`` is the webhook deduplication key.  NULL
    order ids (manual events) never collide with one another.
    """

    __tablename__ = "tracked_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "source", "order_id", name="uq_tracked_events_user_source_order"),
        Index("ix_tracked_events_user_created", "user_id", "created_at"),
    )


class WebhookEventTable(Base):
    """Append-only audit record of every inbound webhook attempt.

    ``store_id`` is deliberately not a foreign key: audit history outlives
    the store, and an in-flight delivery for a store deleted mid-request
    must still be recordable.
    """

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    store_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    marketplace_type: Mapped[str] = mapped_column(String(32), nullable=False)
    raw_payload: Mapped[str] = mapped_column(Text, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ignored_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_webhook_events_store_created", "store_id", "created_at"),
        Index("ix_webhook_events_order", "marketplace_type", "order_id"),
    )
