"""HMAC helpers for webhook signature verification.

All comparisons go through :func:`constant_time_equals` so that the time taken
to reject a forged signature does not depend on how many leading characters
matched.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from enum import Enum


class DigestEncoding(str, Enum):
    """How a marketplace renders the HMAC digest in its signature header."""

    BASE64 = "base64"
    HEX = "hex"


def compute_hmac_sha256(secret: str, body: bytes, encoding: DigestEncoding) -> str:
    """Return the HMAC-SHA256 of *body* keyed with *secret*.

    Parameters
    ----------
    secret:
        The store's webhook secret (UTF-8 encoded before use).
    body:
        The raw request body exactly as received on the wire.
    encoding:
        Output encoding expected by the marketplace.
    """
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
    if encoding == DigestEncoding.HEX:
        return digest.hexdigest()
    return base64.b64encode(digest.digest()).decode("ascii")


def constant_time_equals(supplied: str, expected: str) -> bool:
    """Compare two signature strings without leaking timing information.

    Both values are encoded to bytes first so that non-ASCII input (which
    ``hmac.compare_digest`` rejects for ``str``) simply fails to match.
    """
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))
