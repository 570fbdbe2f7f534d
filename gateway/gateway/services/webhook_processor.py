"""Inbound marketplace webhook pipeline.

Each delivery ends in exactly one of three outcomes:

* **rejected** (non-2xx): unknown store, marketplace mismatch, bad signature,
  or a body that is not a UTF-8 encoded JSON object.  An audit row is kept.
* **ignored** (200): authentic, but not billable (unpaid, test order,
  disabled store, suspended owner, or an order already recorded).  An audit
  row is kept; the usage ledger is untouched.
* **processed** (200): audit row, tracked event and usage increment are
  committed in one transaction.

The processor commits its own transactions so that audit rows survive the
non-2xx responses of rejected deliveries.  Duplicate detection is a fast-path
lookup backed by the ``(user_id, source, order_id)`` unique constraint; a
delivery that loses the race to a concurrent duplicate is rolled back and
recorded as ignored.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from metering_core.marketplaces import OrderClassification, WebhookContext, get_adapter
from metering_core.models import IgnoredReason, Marketplace, StoreSnapshot, UsageSnapshot, WebhookOutcome
from metering_core.state.repository import (
    TRACKED_EVENT_DEDUP_CONSTRAINT,
    TrackedEventRepository,
    WebhookEventRepository,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.services.store_directory import StoreDirectory
from gateway.services.usage_ledger import DEFAULT_COST_PER_EVENT, UsageLedger

logger = logging.getLogger(__name__)

ORDER_CREATED_EVENT = "order_created"

# SQLite reports the violated columns rather than the constraint name.
_DEDUP_VIOLATION_MARKERS: tuple[str, ...] = (TRACKED_EVENT_DEDUP_CONSTRAINT, "tracked_events.order_id")


@dataclass(frozen=True)
class WebhookRequest:
    """One inbound delivery as received on the wire."""

    marketplace: Marketplace
    store_id: str
    raw_body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookResult:
    """Terminal state of a delivery plus what the HTTP layer needs to answer."""

    outcome: WebhookOutcome
    status_code: int
    reason: str | None = None
    webhook_event_id: str | None = None
    tracked_event_id: str | None = None
    usage: UsageSnapshot | None = None

    @property
    def message(self) -> str:
        if self.outcome == WebhookOutcome.PROCESSED:
            return "Webhook processed successfully"
        if self.outcome == WebhookOutcome.IGNORED:
            return f"ignored: {self.reason}"
        return self.reason or "Webhook rejected"


def _is_dedup_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return any(marker in message for marker in _DEDUP_VIOLATION_MARKERS)


def _decode_text(raw_body: bytes) -> str | None:
    """Decode the body as UTF-8, or return ``None`` if it is not valid UTF-8."""
    try:
        return raw_body.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _decode_payload(text: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class WebhookProcessor:
    """Authenticate, classify and account for one marketplace webhook.

    Parameters
    ----------
    session:
        Request-scoped session.  The processor commits or rolls it back
        itself; callers must not rely on uncommitted state afterwards.
    cost_per_event:
        Rate passed through to the :class:`UsageLedger`.
    """

    def __init__(self, session: AsyncSession, cost_per_event: Decimal = DEFAULT_COST_PER_EVENT) -> None:
        self._session = session
        self._stores = StoreDirectory(session)
        self._ledger = UsageLedger(session, cost_per_event)
        self._tracked_events = TrackedEventRepository(session)
        self._webhook_events = WebhookEventRepository(session)

    async def process(self, request: WebhookRequest) -> WebhookResult:
        marketplace = request.marketplace
        text = _decode_text(request.raw_body)
        # Unverified or undecodable bodies are kept for inspection only; a
        # processed delivery always stores the exact UTF-8 text that was signed.
        raw_text = text if text is not None else request.raw_body.decode("utf-8", errors="replace")

        store = await self._stores.get_snapshot(request.store_id)
        if store is None:
            logger.warning(
                "Webhook rejected: store %s not found (marketplace=%s)",
                request.store_id,
                marketplace.value,
            )
            return await self._reject(request, raw_text, 404, "Store not found")

        if store.marketplace_type != marketplace:
            logger.warning(
                "Webhook rejected: store %s is %s, delivery claims %s",
                store.id,
                store.marketplace_type.value,
                marketplace.value,
            )
            return await self._reject(request, raw_text, 400, "Marketplace type mismatch")

        adapter = get_adapter(marketplace)
        ctx = WebhookContext(
            raw_body=request.raw_body,
            headers=request.headers,
            query_params=request.query_params,
            stored_secret=store.webhook_secret,
        )
        if adapter is None or not adapter.verify(ctx):
            logger.warning(
                "Webhook rejected: invalid signature for store %s (user_id=%s, marketplace=%s)",
                store.id,
                store.user_id,
                marketplace.value,
            )
            return await self._reject(request, raw_text, 401, "Invalid webhook signature")

        payload = _decode_payload(text) if text is not None else None
        if payload is None:
            logger.warning(
                "Webhook rejected: store %s sent a body that is not a UTF-8 JSON object (utf8=%s)",
                store.id,
                text is not None,
            )
            return await self._reject(
                request,
                raw_text,
                400,
                "Webhook payload must be a UTF-8 encoded JSON object",
                verified=True,
                ignored_reason=IgnoredReason.INVALID_PAYLOAD,
            )

        order = adapter.classify(payload)
        reason = await self._ignore_reason(store, order)
        if reason is not None:
            return await self._ignore(store, raw_text, order.order_id, reason)

        try:
            webhook_event = await self._webhook_events.record(
                store_id=store.id,
                marketplace_type=marketplace.value,
                raw_payload=raw_text,
                verified=True,
                processed=True,
                order_id=order.order_id,
            )
            tracked_event = await self._tracked_events.create(
                store.user_id,
                marketplace.value,
                ORDER_CREATED_EVENT,
                order.order_id,
            )
            usage = await self._ledger.increment_usage(store.user_id)
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            if not _is_dedup_violation(exc):
                raise
            logger.info(
                "Concurrent duplicate delivery for order %s (store_id=%s); recording as ignored",
                order.order_id,
                store.id,
            )
            return await self._ignore(store, raw_text, order.order_id, IgnoredReason.DUPLICATE_ORDER)

        logger.info(
            "Webhook processed: store_id=%s user_id=%s order_id=%s marketplace=%s usage=%d",
            store.id,
            store.user_id,
            order.order_id,
            marketplace.value,
            usage.event_count,
        )
        return WebhookResult(
            outcome=WebhookOutcome.PROCESSED,
            status_code=200,
            webhook_event_id=webhook_event.id,
            tracked_event_id=tracked_event.id,
            usage=usage,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ignore_reason(self, store: StoreSnapshot, order: OrderClassification) -> IgnoredReason | None:
        """Apply the business rules in order; first match wins."""
        if not order.is_paid:
            return IgnoredReason.NOT_PAID
        if order.is_test:
            return IgnoredReason.TEST_EVENT
        if store.is_disabled:
            return IgnoredReason.STORE_DISABLED
        if store.owner_suspended:
            return IgnoredReason.USER_SUSPENDED
        if order.order_id is not None:
            existing = await self._tracked_events.find_by_order(
                store.user_id,
                store.marketplace_type.value,
                order.order_id,
            )
            if existing is not None:
                return IgnoredReason.DUPLICATE_ORDER
        return None

    async def _ignore(
        self,
        store: StoreSnapshot,
        raw_text: str,
        order_id: str | None,
        reason: IgnoredReason,
    ) -> WebhookResult:
        webhook_event = await self._webhook_events.record(
            store_id=store.id,
            marketplace_type=store.marketplace_type.value,
            raw_payload=raw_text,
            verified=True,
            processed=False,
            order_id=order_id,
            ignored_reason=reason.value,
        )
        await self._session.commit()
        logger.info(
            "Webhook ignored (%s): store_id=%s user_id=%s order_id=%s",
            reason.value,
            store.id,
            store.user_id,
            order_id,
        )
        return WebhookResult(
            outcome=WebhookOutcome.IGNORED,
            status_code=200,
            reason=reason.value,
            webhook_event_id=webhook_event.id,
        )

    async def _reject(
        self,
        request: WebhookRequest,
        raw_text: str,
        status_code: int,
        reason: str,
        *,
        verified: bool = False,
        ignored_reason: IgnoredReason | None = None,
    ) -> WebhookResult:
        webhook_event = await self._webhook_events.record(
            store_id=request.store_id,
            marketplace_type=request.marketplace.value,
            raw_payload=raw_text,
            verified=verified,
            processed=False,
            ignored_reason=ignored_reason.value if ignored_reason is not None else None,
        )
        await self._session.commit()
        return WebhookResult(
            outcome=WebhookOutcome.REJECTED,
            status_code=status_code,
            reason=reason,
            webhook_event_id=webhook_event.id,
        )
