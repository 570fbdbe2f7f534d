"""Manual event tracking for authenticated callers.

Suspended accounts are refused before any usage is read.  Everyone else is
checked against the billing gate; an admitted event and its usage increment
are written in the same transaction so neither exists without the other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from metering_core.models import EventSource, Principal, UsageSnapshot
from metering_core.state.repository import TrackedEventRepository
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.services.billing_gate import DEFAULT_FREE_QUOTA, BillingGate
from gateway.services.exceptions import AccountSuspendedError, QuotaExceededError
from gateway.services.usage_ledger import DEFAULT_COST_PER_EVENT, UsageLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackResult:
    event_id: str
    usage: UsageSnapshot


class EventTracker:
    """Record billable events reported directly by a merchant."""

    def __init__(
        self,
        session: AsyncSession,
        cost_per_event: Decimal = DEFAULT_COST_PER_EVENT,
        default_free_quota: int = DEFAULT_FREE_QUOTA,
    ) -> None:
        self._session = session
        self._ledger = UsageLedger(session, cost_per_event)
        self._gate = BillingGate(session, default_free_quota)
        self._tracked_events = TrackedEventRepository(session)

    async def track(self, principal: Principal, source: EventSource, event_type: str) -> TrackResult:
        """Record one event for *principal*.

        Raises
        ------
        AccountSuspendedError
            If the caller's account is suspended.
        QuotaExceededError
            If billing is inactive and the free quota is used up.
        """
        if principal.is_suspended:
            logger.warning("Event tracking refused: user %s is suspended", principal.id)
            raise AccountSuspendedError(f"Account {principal.id} is suspended")

        # The counter row stays locked until commit so concurrent requests
        # cannot both pass the quota check on the same count.
        current = await self._ledger.get_current_period_usage(principal.id, lock=True)
        decision = await self._gate.can_track_event(principal.id, current.event_count)
        if not decision.allowed:
            raise QuotaExceededError(decision.reason or "Quota exceeded")

        event = await self._tracked_events.create(principal.id, source.value, event_type)
        usage = await self._ledger.increment_usage(principal.id)
        logger.info(
            "Event tracked: user_id=%s source=%s event_type=%s usage=%d",
            principal.id,
            source.value,
            event_type,
            usage.event_count,
        )
        return TrackResult(event_id=event.id, usage=usage)
