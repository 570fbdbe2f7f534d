"""Usage metering endpoints for the authenticated caller."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from gateway.dependencies import SessionDep, SettingsDep, UserIdDep
from gateway.schemas import BillingSummary, CurrentUsageResponse, PeriodUsage, UsageHistoryResponse
from gateway.services.billing_gate import BillingGate
from gateway.services.usage_ledger import DEFAULT_HISTORY_LIMIT, UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/current", response_model=CurrentUsageResponse)
async def get_current_usage(
    session: SessionDep,
    user_id: UserIdDep,
    settings: SettingsDep,
) -> CurrentUsageResponse:
    """Return the current month's counter together with the billing state."""
    ledger = UsageLedger(session, settings.cost_per_event)
    gate = BillingGate(session, settings.default_free_quota)

    usage = await ledger.get_current_period_usage(user_id)
    billing = await gate.get_billing_status(user_id)
    remaining = gate.get_remaining_quota(billing.free_quota, usage.event_count)

    return CurrentUsageResponse(
        current_month=PeriodUsage.from_snapshot(usage),
        billing=BillingSummary.from_status(billing, remaining),
    )


@router.get("/history", response_model=UsageHistoryResponse)
async def get_usage_history(
    session: SessionDep,
    user_id: UserIdDep,
    settings: SettingsDep,
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=120, description="Number of periods to return"),
) -> UsageHistoryResponse:
    """Return up to *limit* billing periods, newest first."""
    ledger = UsageLedger(session, settings.cost_per_event)
    history = await ledger.get_history(user_id, min(limit, settings.usage_history_max_limit))
    return UsageHistoryResponse(history=[PeriodUsage.from_snapshot(entry) for entry in history])
