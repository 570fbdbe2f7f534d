"""WooCommerce order webhooks (HMAC-SHA256, base64, ``X-WC-Webhook-Signature``)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from metering_core.marketplaces.base import MarketplaceAdapter, WebhookContext, first_present, mentions_test
from metering_core.marketplaces.signatures import DigestEncoding, compute_hmac_sha256
from metering_core.models.enums import Marketplace

SIGNATURE_HEADER = "X-WC-Webhook-Signature"

_PAID_STATUSES = frozenset({"completed", "processing"})


class WooCommerceAdapter(MarketplaceAdapter):
    marketplace = Marketplace.WOOCOMMERCE

    def supplied_signature(self, ctx: WebhookContext) -> str | None:
        return ctx.header(SIGNATURE_HEADER)

    def expected_signature(self, raw_body: bytes, secret: str) -> str:
        return compute_hmac_sha256(secret, raw_body, DigestEncoding.BASE64)

    def _order_id(self, payload: Mapping[str, Any]) -> str | None:
        return first_present(payload.get("id"), payload.get("order_key"))

    def _is_paid(self, payload: Mapping[str, Any]) -> bool:
        return payload.get("status") in _PAID_STATUSES

    def _is_test(self, payload: Mapping[str, Any]) -> bool:
        return mentions_test(payload.get("customer_note"))
