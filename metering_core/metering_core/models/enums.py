"""Enumerations shared by the state store, the marketplace adapters and the API."""

from __future__ import annotations

from enum import Enum


class Marketplace(str, Enum):
    """Storefront platforms that deliver order webhooks."""

    SHOPIFY = "SHOPIFY"
    WOOCOMMERCE = "WOOCOMMERCE"
    BIGCOMMERCE = "BIGCOMMERCE"
    MAGENTO = "MAGENTO"

    @classmethod
    def from_path(cls, value: str) -> Marketplace:
        """Resolve the lower-case URL segment (``/webhooks/shopify/...``).

        Raises
        ------
        ValueError
            If *value* does not name a supported marketplace.
        """
        try:
            return cls(value.upper())
        except ValueError:
            raise ValueError(f"Unsupported marketplace: {value!r}") from None


class EventSource(str, Enum):
    """Origin of a tracked event.

    Marketplace members mirror :class:`Marketplace`; ad platforms and custom
    sites are only accepted through the manual tracking endpoint.
    """

    SHOPIFY = "SHOPIFY"
    WOOCOMMERCE = "WOOCOMMERCE"
    BIGCOMMERCE = "BIGCOMMERCE"
    MAGENTO = "MAGENTO"
    CUSTOM_SITE_1 = "CUSTOM_SITE_1"
    CUSTOM_SITE_2 = "CUSTOM_SITE_2"
    META_ADS = "META_ADS"
    GOOGLE_ADS = "GOOGLE_ADS"
    TIKTOK_ADS = "TIKTOK_ADS"
    X_ADS = "X_ADS"
    SNAPCHAT_ADS = "SNAPCHAT_ADS"
    REDDIT_ADS = "REDDIT_ADS"
    PINTEREST_ADS = "PINTEREST_ADS"


class AccountStatus(str, Enum):
    """Lifecycle state of a merchant account (owned by the identity provider)."""

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class BillingStatus(str, Enum):
    """Whether paid billing has been activated for a user."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class StoreStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class WebhookOutcome(str, Enum):
    """Terminal state of one inbound webhook delivery."""

    REJECTED = "rejected"
    IGNORED = "ignored"
    PROCESSED = "processed"


class IgnoredReason(str, Enum):
    """Why a verified webhook was acknowledged without recording an event."""

    NOT_PAID = "order not paid"
    TEST_EVENT = "test event"
    STORE_DISABLED = "store disabled"
    USER_SUSPENDED = "user suspended"
    DUPLICATE_ORDER = "duplicate order"
    INVALID_PAYLOAD = "invalid payload"
