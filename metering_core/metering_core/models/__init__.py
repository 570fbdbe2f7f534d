"""Domain enums and value objects."""

from metering_core.models.enums import (
    AccountStatus,
    BillingStatus,
    EventSource,
    IgnoredReason,
    Marketplace,
    StoreStatus,
    WebhookOutcome,
)
from metering_core.models.usage import (
    BillingDecision,
    BillingStatusSummary,
    Principal,
    StoreSnapshot,
    UsageSnapshot,
)

__all__ = [
    "AccountStatus",
    "BillingDecision",
    "BillingStatus",
    "BillingStatusSummary",
    "EventSource",
    "IgnoredReason",
    "Marketplace",
    "Principal",
    "StoreSnapshot",
    "StoreStatus",
    "UsageSnapshot",
    "WebhookOutcome",
]
