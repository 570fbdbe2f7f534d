"""Free-quota admission control for manually tracked events.

Accounts without active billing may record ``free_quota`` events per
calendar month.  Billing accounts are created lazily with the configured
default quota the first time a user is checked.
"""

from __future__ import annotations

import logging

from metering_core.models import BillingDecision, BillingStatus, BillingStatusSummary
from metering_core.state.repository import BillingAccountRepository
from metering_core.state.tables import BillingAccountTable
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_FREE_QUOTA = 100
QUOTA_EXCEEDED_REASON = "Free quota exceeded. Please activate your billing account."


class BillingGate:
    """Decide whether a user may record another event.

    Parameters
    ----------
    session:
        Request-scoped session.
    default_free_quota:
        Quota given to billing accounts created by this gate.
    """

    def __init__(self, session: AsyncSession, default_free_quota: int = DEFAULT_FREE_QUOTA) -> None:
        self._session = session
        self._accounts = BillingAccountRepository(session)
        self._default_free_quota = default_free_quota

    async def _account(self, user_id: str) -> BillingAccountTable:
        return await self._accounts.get_or_create(
            user_id,
            status=BillingStatus.ACTIVE.value,
            free_quota=self._default_free_quota,
        )

    async def can_track_event(self, user_id: str, current_usage: int) -> BillingDecision:
        """Check *current_usage* against the user's billing state.

        Returns
        -------
        BillingDecision
            ``allowed=False`` with a reason when billing is inactive and the
            free quota is used up; ``allowed=True`` otherwise.
        """
        account = await self._account(user_id)
        if account.status == BillingStatus.INACTIVE.value and current_usage >= account.free_quota:
            logger.info(
                "Quota exceeded for user %s: usage=%d free_quota=%d",
                user_id,
                current_usage,
                account.free_quota,
            )
            return BillingDecision(allowed=False, reason=QUOTA_EXCEEDED_REASON)
        return BillingDecision(allowed=True)

    @staticmethod
    def get_remaining_quota(free_quota: int, used: int) -> int:
        """Return how many free events are left, never negative."""
        return max(free_quota - used, 0)

    async def get_billing_status(self, user_id: str) -> BillingStatusSummary:
        account = await self._account(user_id)
        status = BillingStatus(account.status)
        return BillingStatusSummary(
            status=status,
            free_quota=account.free_quota,
            is_active=status == BillingStatus.ACTIVE,
        )
