"""Bearer token handling.

Tokens are issued by the external identity provider; the gateway only
validates them.  :func:`create_access_token` exists for local tooling and
tests that need a token signed with the gateway's secret.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt  # PyJWT
from pydantic import BaseModel, ConfigDict

from gateway.config import GatewaySettings, PlatformEnv

logger = logging.getLogger(__name__)

_dev_secret: str | None = None


class TokenClaims(BaseModel):
    """Validated claims of an access token."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    sub: str
    email: str | None = None
    exp: int | None = None


def resolve_jwt_secret(settings: GatewaySettings) -> str:
    """Return the signing secret, generating a per-process one in dev.

    Raises
    ------
    RuntimeError
        If no secret is configured outside the dev environment.
    """
    global _dev_secret  # noqa: PLW0603
    configured = settings.jwt_secret.get_secret_value()
    if configured:
        return configured
    if settings.platform_env != PlatformEnv.DEV:
        raise RuntimeError(
            f"GATEWAY_JWT_SECRET must be set in {settings.platform_env.value} mode. "
            "Refusing to start with an insecure default secret."
        )
    if _dev_secret is None:
        _dev_secret = f"dev-{secrets.token_hex(32)}"
        logger.warning(
            "GATEWAY_JWT_SECRET not set; generated random per-process dev secret. "
            "Tokens will not survive process restarts."
        )
    return _dev_secret


def create_access_token(
    settings: GatewaySettings,
    user_id: str,
    email: str | None = None,
    *,
    ttl_seconds: int = 3600,
) -> str:
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, resolve_jwt_secret(settings), algorithm=settings.jwt_algorithm)


def decode_access_token(settings: GatewaySettings, token: str) -> TokenClaims:
    """Validate *token* and return its claims.

    Raises
    ------
    PermissionError
        If the token is expired, malformed, or signed with another key.
    """
    try:
        payload = jwt.decode(
            token,
            resolve_jwt_secret(settings),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise PermissionError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise PermissionError(f"Invalid token: {exc}") from exc
    return TokenClaims.model_validate(payload)
