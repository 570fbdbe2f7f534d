"""Magento order webhooks.

Magento does not sign the body.  The store's secret is configured as a
``secret`` query parameter on the webhook URL and compared directly.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from metering_core.marketplaces.base import MarketplaceAdapter, WebhookContext, first_present, mentions_test
from metering_core.models.enums import Marketplace

SECRET_QUERY_PARAM = "secret"

_PAID_STATES = frozenset({"complete", "processing"})


class MagentoAdapter(MarketplaceAdapter):
    marketplace = Marketplace.MAGENTO

    def supplied_signature(self, ctx: WebhookContext) -> str | None:
        return ctx.query_params.get(SECRET_QUERY_PARAM)

    def expected_signature(self, raw_body: bytes, secret: str) -> str:
        return secret

    def _order_id(self, payload: Mapping[str, Any]) -> str | None:
        return first_present(payload.get("entity_id"), payload.get("increment_id"))

    def _is_paid(self, payload: Mapping[str, Any]) -> bool:
        return payload.get("state") in _PAID_STATES

    def _is_test(self, payload: Mapping[str, Any]) -> bool:
        return mentions_test(payload.get("customer_note"))
