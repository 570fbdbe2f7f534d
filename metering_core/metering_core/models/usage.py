"""Value objects returned by the metering services.

ORM rows never leave a request's session: services convert them to these
immutable models so callers can keep using them after a commit or rollback.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from metering_core.models.enums import AccountStatus, BillingStatus, Marketplace, StoreStatus


class UsageSnapshot(BaseModel):
    """Event count and estimated cost for one (user, year, month) period."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    year: int
    month: int = Field(..., ge=1, le=12)
    event_count: int = Field(..., ge=0)
    estimated_cost: Decimal
    updated_at: datetime | None = None


class BillingDecision(BaseModel):
    """Outcome of a billing-gate admission check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None


class BillingStatusSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: BillingStatus
    free_quota: int
    is_active: bool


class Principal(BaseModel):
    """The authenticated caller as exposed by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    status: AccountStatus

    @property
    def is_suspended(self) -> bool:
        return self.status == AccountStatus.SUSPENDED


class StoreSnapshot(BaseModel):
    """Point-in-time copy of a store and its owner's account status.

    The webhook pipeline reads this once at the start of a request and honours
    it for the rest of the request, even if the store is disabled or deleted
    concurrently.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    marketplace_type: Marketplace
    store_name: str
    store_url: str
    status: StoreStatus
    webhook_secret: str
    owner_status: AccountStatus
    created_at: datetime | None = None

    @property
    def is_disabled(self) -> bool:
        return self.status == StoreStatus.DISABLED

    @property
    def owner_suspended(self) -> bool:
        return self.owner_status == AccountStatus.SUSPENDED
