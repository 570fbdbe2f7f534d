"""Per-marketplace webhook signature schemes and order payload field maps."""

from metering_core.marketplaces.base import MarketplaceAdapter, OrderClassification, WebhookContext
from metering_core.marketplaces.registry import (
    classify_order,
    get_adapter,
    supported_marketplaces,
    verify_signature,
)

__all__ = [
    "MarketplaceAdapter",
    "OrderClassification",
    "WebhookContext",
    "classify_order",
    "get_adapter",
    "supported_marketplaces",
    "verify_signature",
]
