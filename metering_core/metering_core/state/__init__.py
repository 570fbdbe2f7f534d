"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from metering_core.state.database import get_engine, get_session, get_session_factory
from metering_core.state.repository import (
    AccountRepository,
    BillingAccountRepository,
    StoreRepository,
    TrackedEventRepository,
    UsageCounterRepository,
    WebhookEventRepository,
)

__all__ = [
    "AccountRepository",
    "BillingAccountRepository",
    "StoreRepository",
    "TrackedEventRepository",
    "UsageCounterRepository",
    "WebhookEventRepository",
    "get_engine",
    "get_session",
    "get_session_factory",
]
