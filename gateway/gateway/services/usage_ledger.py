"""Per-user monthly usage counters with atomic increments.

The ledger is the only writer of ``usage_counters``.  Every increment is a
single ``INSERT ... ON CONFLICT DO UPDATE`` statement, so concurrent
deliveries for the same user never lose an update and the stored cost always
equals ``event_count * cost_per_event``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from metering_core.models import UsageSnapshot
from metering_core.state.repository import UsageCounterRepository
from metering_core.state.tables import UsageCounterTable
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_COST_PER_EVENT = Decimal("0.005")
DEFAULT_HISTORY_LIMIT = 12


def current_period(now: datetime | None = None) -> tuple[int, int]:
    """Return the ``(year, month)`` billing period for *now* (UTC)."""
    moment = now or datetime.now(UTC)
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.year, moment.month


def _snapshot(row: UsageCounterTable) -> UsageSnapshot:
    return UsageSnapshot(
        user_id=row.user_id,
        year=row.year,
        month=row.month,
        event_count=row.event_count,
        estimated_cost=Decimal(row.estimated_cost),
        updated_at=row.updated_at,
    )


class UsageLedger:
    """Monthly event counts and estimated cost per user.

    Parameters
    ----------
    session:
        Request-scoped session.  The ledger flushes but never commits, so an
        increment joins the caller's transaction.
    cost_per_event:
        Price of one tracked event.
    """

    def __init__(self, session: AsyncSession, cost_per_event: Decimal = DEFAULT_COST_PER_EVENT) -> None:
        self._session = session
        self._cost_per_event = cost_per_event
        self._counters = UsageCounterRepository(session)

    @property
    def cost_per_event(self) -> Decimal:
        return self._cost_per_event

    async def increment_usage(self, user_id: str) -> UsageSnapshot:
        """Record one event in the current period and return the new totals."""
        year, month = current_period()
        row = await self._counters.increment(user_id, year, month, self._cost_per_event)
        logger.debug(
            "Usage incremented for user %s %d-%02d: count=%d",
            user_id,
            year,
            month,
            row.event_count,
        )
        return _snapshot(row)

    async def get_current_period_usage(self, user_id: str, *, lock: bool = False) -> UsageSnapshot:
        """Return the current period's counter, creating a zero row if needed.

        Pass *lock* when the caller will decide on the value and then
        increment it in the same transaction.
        """
        year, month = current_period()
        row = await self._counters.get_or_create(user_id, year, month, for_update=lock)
        return _snapshot(row)

    async def get_history(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> list[UsageSnapshot]:
        """Return up to *limit* periods, newest first."""
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        rows = await self._counters.list_history(user_id, limit)
        return [_snapshot(row) for row in rows]
