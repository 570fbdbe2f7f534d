"""Lookup table from :class:`Marketplace` to its adapter.

Module-level functions here are the entry points used by the webhook
pipeline.  Like the adapters, they never raise for unknown marketplaces or
malformed input.
"""

from __future__ import annotations

import logging
from typing import Any

from metering_core.marketplaces.base import MarketplaceAdapter, OrderClassification
from metering_core.marketplaces.bigcommerce import BigCommerceAdapter
from metering_core.marketplaces.magento import MagentoAdapter
from metering_core.marketplaces.shopify import ShopifyAdapter
from metering_core.marketplaces.woocommerce import WooCommerceAdapter
from metering_core.models.enums import Marketplace

logger = logging.getLogger(__name__)

_ADAPTERS: dict[Marketplace, MarketplaceAdapter] = {
    adapter.marketplace: adapter
    for adapter in (
        ShopifyAdapter(),
        WooCommerceAdapter(),
        BigCommerceAdapter(),
        MagentoAdapter(),
    )
}


def get_adapter(marketplace: Marketplace | str) -> MarketplaceAdapter | None:
    """Return the adapter for *marketplace*, or ``None`` if it is not supported."""
    if not isinstance(marketplace, Marketplace):
        try:
            marketplace = Marketplace(str(marketplace).upper())
        except ValueError:
            return None
    return _ADAPTERS.get(marketplace)


def supported_marketplaces() -> list[Marketplace]:
    return list(_ADAPTERS)


def verify_signature(
    marketplace: Marketplace | str,
    raw_body: bytes,
    supplied: str | None,
    stored_secret: str | None,
) -> bool:
    """Verify an inbound webhook for *marketplace*.

    Parameters
    ----------
    marketplace:
        The marketplace the webhook claims to come from.
    raw_body:
        The unparsed request body.  Ignored by shared-secret schemes.
    supplied:
        The signature header value, or the shared-secret query parameter.
    stored_secret:
        The store's webhook secret.

    Returns
    -------
    bool
        ``True`` only for an authentic delivery.  Missing values, unknown
        marketplaces and internal errors all yield ``False``.
    """
    adapter = get_adapter(marketplace)
    if adapter is None:
        logger.warning("Signature check requested for unsupported marketplace %r", marketplace)
        return False
    return adapter.verify_signature(raw_body, supplied, stored_secret)


def classify_order(marketplace: Marketplace | str, payload: Any) -> OrderClassification:
    """Extract order id, paid flag and test flag from a parsed payload."""
    adapter = get_adapter(marketplace)
    if adapter is None:
        return OrderClassification()
    return adapter.classify(payload)
