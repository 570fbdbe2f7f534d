"""Shopify order webhooks.

Shopify signs the raw body with HMAC-SHA256 and sends the base64 digest in
``X-Shopify-Hmac-Sha256``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from metering_core.marketplaces.base import MarketplaceAdapter, WebhookContext, first_present
from metering_core.marketplaces.signatures import DigestEncoding, compute_hmac_sha256
from metering_core.models.enums import Marketplace

SIGNATURE_HEADER = "X-Shopify-Hmac-Sha256"

_PAID_STATUSES = frozenset({"paid", "authorized"})


class ShopifyAdapter(MarketplaceAdapter):
    marketplace = Marketplace.SHOPIFY

    def supplied_signature(self, ctx: WebhookContext) -> str | None:
        return ctx.header(SIGNATURE_HEADER)

    def expected_signature(self, raw_body: bytes, secret: str) -> str:
        return compute_hmac_sha256(secret, raw_body, DigestEncoding.BASE64)

    def _order_id(self, payload: Mapping[str, Any]) -> str | None:
        return first_present(payload.get("id"), payload.get("order_number"))

    def _is_paid(self, payload: Mapping[str, Any]) -> bool:
        return payload.get("financial_status") in _PAID_STATUSES

    def _is_test(self, payload: Mapping[str, Any]) -> bool:
        if payload.get("test") is True:
            return True
        name = payload.get("name")
        # Order names are matched case-sensitively ("#1001", "test-order").
        return isinstance(name, str) and "test" in name
