"""Request and response models for the gateway endpoints.

JSON bodies use camelCase keys; Python attributes stay snake_case.  Both
spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from metering_core.models import (
    BillingStatus,
    BillingStatusSummary,
    EventSource,
    Marketplace,
    StoreStatus,
    UsageSnapshot,
)
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, StringConstraints
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


class UsageTotals(CamelModel):
    event_count: int
    estimated_cost: float

    @classmethod
    def from_snapshot(cls, snapshot: UsageSnapshot) -> UsageTotals:
        return cls(event_count=snapshot.event_count, estimated_cost=float(snapshot.estimated_cost))


class PeriodUsage(CamelModel):
    """Usage for one (year, month) billing period."""

    year: int
    month: int
    event_count: int
    estimated_cost: float

    @classmethod
    def from_snapshot(cls, snapshot: UsageSnapshot) -> PeriodUsage:
        return cls(
            year=snapshot.year,
            month=snapshot.month,
            event_count=snapshot.event_count,
            estimated_cost=float(snapshot.estimated_cost),
        )


class BillingSummary(CamelModel):
    status: BillingStatus
    free_quota: int
    remaining_quota: int
    is_active: bool

    @classmethod
    def from_status(cls, summary: BillingStatusSummary, remaining_quota: int) -> BillingSummary:
        return cls(
            status=summary.status,
            free_quota=summary.free_quota,
            remaining_quota=remaining_quota,
            is_active=summary.is_active,
        )


class CurrentUsageResponse(CamelModel):
    current_month: PeriodUsage
    billing: BillingSummary


class UsageHistoryResponse(CamelModel):
    history: list[PeriodUsage] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Manual event tracking
# ---------------------------------------------------------------------------


class TrackEventRequest(CamelModel):
    source: EventSource
    event_type: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class TrackEventResponse(CamelModel):
    event_id: str
    usage: UsageTotals


class ErrorResponse(BaseModel):
    detail: str
    code: str | None = None


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class WebhookProcessedData(CamelModel):
    webhook_event_id: str
    tracked_event_id: str
    usage: UsageTotals


class WebhookProcessedResponse(CamelModel):
    status: Literal["processed"] = "processed"
    message: str
    data: WebhookProcessedData


class WebhookIgnoredResponse(CamelModel):
    status: Literal["ignored"] = "ignored"
    reason: str
    message: str


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class StoreCreateRequest(CamelModel):
    marketplace_type: Marketplace
    store_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    store_url: HttpUrl


class StoreStatusUpdateRequest(CamelModel):
    status: StoreStatus


class StoreResponse(CamelModel):
    id: str
    marketplace_type: Marketplace
    store_name: str
    store_url: str
    status: StoreStatus
    webhook_secret: str
    webhook_url: str
    created_at: datetime | None = None


class StoreListResponse(CamelModel):
    stores: list[StoreResponse] = Field(default_factory=list)


class WebhookEventResponse(CamelModel):
    """One audit record of an inbound webhook."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    store_id: str | None
    marketplace_type: str
    verified: bool
    processed: bool
    order_id: str | None = None
    ignored_reason: str | None = None
    raw_payload: str
    created_at: datetime


class WebhookEventListResponse(CamelModel):
    events: list[WebhookEventResponse] = Field(default_factory=list)
