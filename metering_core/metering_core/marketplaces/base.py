"""Polymorphic marketplace adapter interface.

Each supported storefront platform implements :class:`MarketplaceAdapter`
once: how its webhooks are signed and where the order fields live in its
payload.  The webhook pipeline only talks to this interface, so adding a
marketplace means adding one adapter and registering it in
:mod:`metering_core.marketplaces.registry`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from metering_core.marketplaces.signatures import constant_time_equals
from metering_core.models.enums import Marketplace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookContext:
    """Everything needed to authenticate one inbound webhook.

    Attributes
    ----------
    raw_body:
        The request body bytes exactly as received (never re-serialised).
    headers:
        Request headers.  Keys are matched case-insensitively.
    query_params:
        Query-string parameters (Magento passes its shared secret here).
    stored_secret:
        The webhook secret stored for the target store.
    """

    raw_body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)
    stored_secret: str | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class OrderClassification(BaseModel):
    """What the pipeline needs to know about an order payload."""

    model_config = ConfigDict(frozen=True)

    order_id: str | None = None
    is_paid: bool = False
    is_test: bool = False


def first_present(*values: Any) -> str | None:
    """Return the first value that is neither ``None`` nor empty, as a string."""
    for value in values:
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value)
        if text:
            return text
    return None


def mentions_test(value: Any) -> bool:
    """Case-insensitive check for the word ``test`` in a free-text field."""
    return isinstance(value, str) and "test" in value.lower()


def nested(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Return ``payload[key]`` if it is a mapping, else an empty dict."""
    value = payload.get(key)
    return value if isinstance(value, Mapping) else {}


class MarketplaceAdapter(ABC):
    """Signature scheme and payload field map for one marketplace.

    Public methods never raise: a failure to verify or extract is reported as
    ``False`` / ``None`` and logged.
    """

    marketplace: ClassVar[Marketplace]

    # ------------------------------------------------------------------
    # Signature verification
    # ------------------------------------------------------------------

    @abstractmethod
    def supplied_signature(self, ctx: WebhookContext) -> str | None:
        """Pull the caller-supplied signature (or shared secret) out of *ctx*."""

    @abstractmethod
    def expected_signature(self, raw_body: bytes, secret: str) -> str:
        """Compute the value a genuine delivery would carry."""

    def verify(self, ctx: WebhookContext) -> bool:
        return self.verify_signature(ctx.raw_body, self.supplied_signature(ctx), ctx.stored_secret)

    def verify_signature(self, raw_body: bytes, supplied: str | None, stored_secret: str | None) -> bool:
        """Check *supplied* against the signature expected for *raw_body*."""
        if not supplied or not stored_secret:
            logger.warning("Missing %s webhook signature or store secret", self.marketplace.value)
            return False
        try:
            expected = self.expected_signature(raw_body, stored_secret)
            is_valid = constant_time_equals(supplied, expected)
        except Exception:
            logger.error("Error verifying %s webhook signature", self.marketplace.value, exc_info=True)
            return False

        if not is_valid:
            logger.warning("%s webhook signature verification failed", self.marketplace.value)
        return is_valid

    # ------------------------------------------------------------------
    # Payload extraction
    # ------------------------------------------------------------------

    @abstractmethod
    def _order_id(self, payload: Mapping[str, Any]) -> str | None: ...

    @abstractmethod
    def _is_paid(self, payload: Mapping[str, Any]) -> bool: ...

    @abstractmethod
    def _is_test(self, payload: Mapping[str, Any]) -> bool: ...

    def extract_order_id(self, payload: Any) -> str | None:
        if not isinstance(payload, Mapping):
            return None
        try:
            return self._order_id(payload)
        except Exception:
            logger.error("Error extracting %s order id", self.marketplace.value, exc_info=True)
            return None

    def is_paid(self, payload: Any) -> bool:
        if not isinstance(payload, Mapping):
            return False
        try:
            return bool(self._is_paid(payload))
        except Exception:
            logger.error("Error checking %s payment status", self.marketplace.value, exc_info=True)
            return False

    def is_test(self, payload: Any) -> bool:
        if not isinstance(payload, Mapping):
            return False
        try:
            return bool(self._is_test(payload))
        except Exception:
            return False

    def classify(self, payload: Any) -> OrderClassification:
        return OrderClassification(
            order_id=self.extract_order_id(payload),
            is_paid=self.is_paid(payload),
            is_test=self.is_test(payload),
        )
