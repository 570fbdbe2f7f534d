"""BigCommerce order webhooks.

Unlike Shopify and WooCommerce, the HMAC-SHA256 digest in
``X-BC-Webhook-Signature`` is hex-encoded.  Order fields are nested under
``data``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from metering_core.marketplaces.base import (
    MarketplaceAdapter,
    WebhookContext,
    first_present,
    mentions_test,
    nested,
)
from metering_core.marketplaces.signatures import DigestEncoding, compute_hmac_sha256
from metering_core.models.enums import Marketplace

SIGNATURE_HEADER = "X-BC-Webhook-Signature"

_PAID_STATUSES = frozenset({"Completed", "Shipped"})


class BigCommerceAdapter(MarketplaceAdapter):
    marketplace = Marketplace.BIGCOMMERCE

    def supplied_signature(self, ctx: WebhookContext) -> str | None:
        return ctx.header(SIGNATURE_HEADER)

    def expected_signature(self, raw_body: bytes, secret: str) -> str:
        return compute_hmac_sha256(secret, raw_body, DigestEncoding.HEX)

    def _order_id(self, payload: Mapping[str, Any]) -> str | None:
        return first_present(nested(payload, "data").get("id"), payload.get("order_id"))

    def _is_paid(self, payload: Mapping[str, Any]) -> bool:
        return nested(payload, "data").get("status") in _PAID_STATUSES

    def _is_test(self, payload: Mapping[str, Any]) -> bool:
        return mentions_test(nested(payload, "data").get("customer_message"))
