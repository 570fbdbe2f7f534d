"""Data access for accounts, stores, usage counters and webhook audit rows.

Repositories never commit.  They flush so that server defaults and generated
ids are visible, and leave the transaction to the service that owns the
request (the webhook processor commits per delivery; everything else relies
on the request-scoped session).  Writes that must survive concurrent
requests are single upsert statements rather than read-modify-write.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Numeric, Select, delete, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from metering_core.state.tables import (
    BillingAccountTable,
    StoreTable,
    TrackedEventTable,
    UsageCounterTable,
    UserTable,
    WebhookEventTable,
)

logger = logging.getLogger(__name__)

TRACKED_EVENT_DEDUP_CONSTRAINT = "uq_tracked_events_user_source_order"


def _dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str] | None = None,
    set_: dict[str, Any] | None = None,
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to overwrite with the inserted values on conflict.
    set_:
        Explicit ``SET`` expressions applied on conflict.  Expressions that
        reference *table* columns see the existing row, which is what makes
        counter increments atomic.  Merged over *update_columns*.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)

    assignments: dict[str, Any] = {col: getattr(stmt.excluded, col) for col in update_columns or []}
    assignments.update(set_ or {})
    stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=assignments)
    return await session.execute(stmt)


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to insert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names for conflict detection.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# AccountRepository
# ---------------------------------------------------------------------------


class AccountRepository:
    """Read access to the ``users`` mirror of the identity provider.

    Writes exist for provisioning and administrative status changes; the
    metering services themselves only read.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> UserTable | None:
        stmt = select(UserTable).where(UserTable.id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        email: str,
        *,
        user_id: str | None = None,
        status: str = "ACTIVE",
    ) -> UserTable:
        row = UserTable(
            id=user_id or uuid.uuid4().hex,
            email=email.lower().strip(),
            status=status,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def set_status(self, user_id: str, status: str) -> bool:
        """Change an account's status.  Returns ``False`` if no such account."""
        stmt = (
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(status=status, updated_at=datetime.now(UTC))
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# BillingAccountRepository
# ---------------------------------------------------------------------------


class BillingAccountRepository:
    """CRUD operations for the ``billing_accounts`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> BillingAccountTable | None:
        stmt = select(BillingAccountTable).where(BillingAccountTable.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        user_id: str,
        *,
        status: str = "ACTIVE",
        free_quota: int = 100,
    ) -> BillingAccountTable:
        """Return the user's billing account, creating it on first use.

        Two concurrent first requests both issue the insert; the unique
        ``user_id`` makes the loser a no-op and both read the same row.
        """
        await _dialect_upsert_nothing(
            self._session,
            BillingAccountTable,
            values={"user_id": user_id, "status": status, "free_quota": free_quota},
            index_elements=["user_id"],
        )
        await self._session.flush()
        row = await self.get(user_id)
        if row is None:  # pragma: no cover - the insert above guarantees a row
            raise RuntimeError(f"Billing account for user {user_id} vanished after upsert")
        return row

    async def set_status(self, user_id: str, status: str) -> bool:
        stmt = (
            update(BillingAccountTable)
            .where(BillingAccountTable.user_id == user_id)
            .values(status=status, updated_at=datetime.now(UTC))
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# StoreRepository
# ---------------------------------------------------------------------------


class StoreRepository:
    """CRUD operations for the ``stores`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def generate_secret() -> str:
        """Return a fresh webhook secret (32 random bytes, hex encoded)."""
        return secrets.token_hex(32)

    async def create(
        self,
        user_id: str,
        marketplace_type: str,
        store_name: str,
        store_url: str,
        *,
        webhook_secret: str | None = None,
    ) -> StoreTable:
        row = StoreTable(
            id=str(uuid.uuid4()),
            user_id=user_id,
            marketplace_type=marketplace_type,
            store_name=store_name.strip(),
            store_url=store_url.strip(),
            webhook_secret=webhook_secret or self.generate_secret(),
            status="ACTIVE",
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, store_id: str) -> StoreTable | None:
        stmt = select(StoreTable).where(StoreTable.id == store_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_with_owner_status(self, store_id: str) -> tuple[StoreTable, str] | None:
        """Fetch a store together with its owner's account status in one query."""
        stmt = (
            select(StoreTable, UserTable.status)
            .join(UserTable, UserTable.id == StoreTable.user_id)
            .where(StoreTable.id == store_id)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]

    async def list_for_user(self, user_id: str) -> list[StoreTable]:
        stmt = (
            select(StoreTable)
            .where(StoreTable.user_id == user_id)
            .order_by(StoreTable.created_at.desc(), StoreTable.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def set_status(self, store_id: str, status: str) -> StoreTable | None:
        stmt = (
            update(StoreTable)
            .where(StoreTable.id == store_id)
            .values(status=status, updated_at=datetime.now(UTC))
        )
        await self._session.execute(stmt)
        await self._session.flush()
        refreshed = (
            select(StoreTable).where(StoreTable.id == store_id).execution_options(populate_existing=True)
        )
        result = await self._session.execute(refreshed)
        return result.scalar_one_or_none()

    async def delete(self, store_id: str) -> bool:
        result = await self._session.execute(delete(StoreTable).where(StoreTable.id == store_id))
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# UsageCounterRepository
# ---------------------------------------------------------------------------


def counter_select(user_id: str, year: int, month: int, *, for_update: bool = False) -> Select:
    """SELECT for one monthly counter, optionally with ``FOR UPDATE``.

    SQLite has no row locks and drops the clause; its writers are already
    serialised by the database lock.
    """
    stmt = (
        select(UsageCounterTable)
        .where(
            UsageCounterTable.user_id == user_id,
            UsageCounterTable.year == year,
            UsageCounterTable.month == month,
        )
        .execution_options(populate_existing=True)
    )
    return stmt.with_for_update() if for_update else stmt


class UsageCounterRepository:
    """Per-user monthly counters in the ``usage_counters`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(
        self,
        user_id: str,
        year: int,
        month: int,
        *,
        for_update: bool = False,
    ) -> UsageCounterTable | None:
        """Read one counter; *for_update* holds its row lock until commit."""
        result = await self._session.execute(counter_select(user_id, year, month, for_update=for_update))
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        user_id: str,
        year: int,
        month: int,
        *,
        for_update: bool = False,
    ) -> UsageCounterTable:
        """Return the period's counter, inserting a zero row if none exists.

        With *for_update* the row stays locked until the transaction ends, so
        a read-check-increment sequence cannot interleave with another one.
        """
        await _dialect_upsert_nothing(
            self._session,
            UsageCounterTable,
            values={
                "user_id": user_id,
                "year": year,
                "month": month,
                "event_count": 0,
                "estimated_cost": Decimal("0"),
            },
            index_elements=["user_id", "year", "month"],
        )
        await self._session.flush()
        row = await self.get(user_id, year, month, for_update=for_update)
        if row is None:  # pragma: no cover - the insert above guarantees a row
            raise RuntimeError(f"Usage counter for user {user_id} {year}-{month:02d} vanished after upsert")
        return row

    async def increment(
        self,
        user_id: str,
        year: int,
        month: int,
        cost_per_event: Decimal,
    ) -> UsageCounterTable:
        """Add one event to the period's counter in a single statement.

        The first event of a period inserts ``(1, cost_per_event)``; later
        events hit the unique constraint and increment the stored row in place,
        recomputing the cost from the new count.  The row is re-read
        afterwards so the returned values reflect this increment.
        """
        rate = literal(cost_per_event, type_=Numeric(12, 4))
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            UsageCounterTable,
            values={
                "user_id": user_id,
                "year": year,
                "month": month,
                "event_count": 1,
                "estimated_cost": cost_per_event,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["user_id", "year", "month"],
            set_={
                "event_count": UsageCounterTable.event_count + 1,
                "estimated_cost": (UsageCounterTable.event_count + 1) * rate,
                "updated_at": now,
            },
        )
        await self._session.flush()
        row = await self.get(user_id, year, month)
        if row is None:  # pragma: no cover - the upsert above guarantees a row
            raise RuntimeError(f"Usage counter for user {user_id} {year}-{month:02d} vanished after upsert")
        return row

    async def list_history(self, user_id: str, limit: int = 12) -> list[UsageCounterTable]:
        """Return up to *limit* counters, newest period first."""
        stmt = (
            select(UsageCounterTable)
            .where(UsageCounterTable.user_id == user_id)
            .order_by(UsageCounterTable.year.desc(), UsageCounterTable.month.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# TrackedEventRepository
# ---------------------------------------------------------------------------


class TrackedEventRepository:
    """Billable events in the ``tracked_events`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_order(self, user_id: str, source: str, order_id: str) -> TrackedEventTable | None:
        stmt = select(TrackedEventTable).where(
            TrackedEventTable.user_id == user_id,
            TrackedEventTable.source == source,
            TrackedEventTable.order_id == order_id,
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def create(
        self,
        user_id: str,
        source: str,
        event_type: str,
        order_id: str | None = None,
    ) -> TrackedEventTable:
        """Insert a tracked event.

        Raises ``IntegrityError`` on flush when ``order_id`` repeats for the
        same user and source.
        """
        row = TrackedEventTable(
            id=uuid.uuid4().hex,
            user_id=user_id,
            source=source,
            event_type=event_type,
            order_id=order_id,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(TrackedEventTable).where(TrackedEventTable.user_id == user_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


# ---------------------------------------------------------------------------
# WebhookEventRepository
# ---------------------------------------------------------------------------


class WebhookEventRepository:
    """Append-only audit log of inbound webhooks (``webhook_events``)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        *,
        store_id: str | None,
        marketplace_type: str,
        raw_payload: str,
        verified: bool,
        processed: bool,
        order_id: str | None = None,
        ignored_reason: str | None = None,
    ) -> WebhookEventTable:
        row = WebhookEventTable(
            id=uuid.uuid4().hex,
            store_id=store_id,
            marketplace_type=marketplace_type,
            raw_payload=raw_payload,
            verified=verified,
            processed=processed,
            order_id=order_id,
            ignored_reason=ignored_reason,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_store(self, store_id: str, limit: int = 50, offset: int = 0) -> list[WebhookEventTable]:
        stmt = (
            select(WebhookEventTable)
            .where(WebhookEventTable.store_id == store_id)
            .order_by(WebhookEventTable.created_at.desc(), WebhookEventTable.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
