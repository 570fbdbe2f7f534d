"""Tests for webhook signature verification across marketplaces."""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest
from metering_core.marketplaces import WebhookContext, get_adapter, verify_signature
from metering_core.marketplaces.signatures import DigestEncoding, compute_hmac_sha256, constant_time_equals
from metering_core.models import Marketplace

_SECRET = "a3f1c0ffee"
_BODY = b'{"id":1001,"financial_status":"paid","name":"#1001"}'


def _b64(body: bytes, secret: str = _SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def _hex(body: bytes, secret: str = _SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# HMAC helpers
# ---------------------------------------------------------------------------


class TestComputeHmac:
    def test_base64_matches_reference(self) -> None:
        assert compute_hmac_sha256(_SECRET, _BODY, DigestEncoding.BASE64) == _b64(_BODY)

    def test_hex_matches_reference(self) -> None:
        assert compute_hmac_sha256(_SECRET, _BODY, DigestEncoding.HEX) == _hex(_BODY)

    def test_constant_time_equals(self) -> None:
        assert constant_time_equals("abc", "abc")
        assert not constant_time_equals("abc", "abd")
        assert not constant_time_equals("abc", "abcd")

    def test_constant_time_equals_non_ascii_does_not_raise(self) -> None:
        assert not constant_time_equals("sïgnature", "signature")


# ---------------------------------------------------------------------------
# Shopify
# ---------------------------------------------------------------------------


class TestShopifySignature:
    def test_valid_signature_verifies(self) -> None:
        assert verify_signature(Marketplace.SHOPIFY, _BODY, _b64(_BODY), _SECRET) is True

    def test_mutated_body_fails(self) -> None:
        tampered = _BODY.replace(b"1001", b"1002")
        assert verify_signature(Marketplace.SHOPIFY, tampered, _b64(_BODY), _SECRET) is False

    @pytest.mark.parametrize("index", [0, 5, 20, -1])
    def test_single_byte_body_mutation_fails(self, index: int) -> None:
        mutated = bytearray(_BODY)
        mutated[index] ^= 0x01
        assert verify_signature(Marketplace.SHOPIFY, bytes(mutated), _b64(_BODY), _SECRET) is False

    def test_mutated_signature_fails(self) -> None:
        signature = _b64(_BODY)
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        assert verify_signature(Marketplace.SHOPIFY, _BODY, flipped, _SECRET) is False

    def test_wrong_secret_fails(self) -> None:
        assert verify_signature(Marketplace.SHOPIFY, _BODY, _b64(_BODY, "other"), _SECRET) is False

    def test_missing_signature_is_false_not_error(self) -> None:
        assert verify_signature(Marketplace.SHOPIFY, _BODY, None, _SECRET) is False
        assert verify_signature(Marketplace.SHOPIFY, _BODY, "", _SECRET) is False

    def test_missing_secret_is_false_not_error(self) -> None:
        assert verify_signature(Marketplace.SHOPIFY, _BODY, _b64(_BODY), None) is False
        assert verify_signature(Marketplace.SHOPIFY, _BODY, _b64(_BODY), "") is False

    def test_hex_digest_is_not_accepted(self) -> None:
        assert verify_signature(Marketplace.SHOPIFY, _BODY, _hex(_BODY), _SECRET) is False

    def test_verify_reads_header_case_insensitively(self) -> None:
        adapter = get_adapter(Marketplace.SHOPIFY)
        assert adapter is not None
        ctx = WebhookContext(
            raw_body=_BODY,
            headers={"x-shopify-hmac-sha256": _b64(_BODY)},
            stored_secret=_SECRET,
        )
        assert adapter.verify(ctx) is True


# ---------------------------------------------------------------------------
# WooCommerce / BigCommerce / Magento
# ---------------------------------------------------------------------------


class TestOtherMarketplaces:
    def test_woocommerce_base64(self) -> None:
        adapter = get_adapter(Marketplace.WOOCOMMERCE)
        assert adapter is not None
        ctx = WebhookContext(_BODY, {"X-WC-Webhook-Signature": _b64(_BODY)}, {}, _SECRET)
        assert adapter.verify(ctx) is True

    def test_woocommerce_ignores_shopify_header(self) -> None:
        adapter = get_adapter(Marketplace.WOOCOMMERCE)
        assert adapter is not None
        ctx = WebhookContext(_BODY, {"X-Shopify-Hmac-Sha256": _b64(_BODY)}, {}, _SECRET)
        assert adapter.verify(ctx) is False

    def test_bigcommerce_hex(self) -> None:
        adapter = get_adapter(Marketplace.BIGCOMMERCE)
        assert adapter is not None
        ctx = WebhookContext(_BODY, {"X-BC-Webhook-Signature": _hex(_BODY)}, {}, _SECRET)
        assert adapter.verify(ctx) is True

    def test_bigcommerce_rejects_base64(self) -> None:
        assert verify_signature(Marketplace.BIGCOMMERCE, _BODY, _b64(_BODY), _SECRET) is False

    def test_magento_shared_secret_query_param(self) -> None:
        adapter = get_adapter(Marketplace.MAGENTO)
        assert adapter is not None
        good = WebhookContext(_BODY, {}, {"secret": _SECRET}, _SECRET)
        bad = WebhookContext(_BODY, {}, {"secret": "guess"}, _SECRET)
        missing = WebhookContext(_BODY, {}, {}, _SECRET)
        assert adapter.verify(good) is True
        assert adapter.verify(bad) is False
        assert adapter.verify(missing) is False

    def test_magento_ignores_body(self) -> None:
        assert verify_signature(Marketplace.MAGENTO, b"anything", _SECRET, _SECRET) is True

    def test_unknown_marketplace_is_false(self) -> None:
        assert verify_signature("etsy", _BODY, _b64(_BODY), _SECRET) is False
