"""Authentication middleware that extracts and validates bearer JWTs.

Extracts ``Authorization: Bearer <token>`` from every request, validates it
with PyJWT, and populates ``request.state`` with ``user_id`` and ``email``.

Marketplace webhooks authenticate by per-store signature instead and, like
probes and docs, bypass bearer authentication.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gateway.config import GatewaySettings, load_gateway_settings
from gateway.security import decode_access_token, resolve_jwt_secret

logger = logging.getLogger(__name__)

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/metrics",
    }
)

# Prefixes that skip auth.
_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
    "/webhooks/",
)


def _is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Checks whether the path is public (webhooks, probes, docs) and skips auth.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Validates the token signature and expiry.
    4. Stores ``user_id`` and ``email`` on ``request.state``.
    5. Returns a 401 JSON response on failure.
    """

    def __init__(self, app: Any, settings: GatewaySettings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or load_gateway_settings()
        # Resolve eagerly so a missing production secret fails at startup.
        resolve_jwt_secret(self._settings)
        logger.info("AuthenticationMiddleware initialised (algorithm=%s)", self._settings.jwt_algorithm)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if _is_public_path(path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing Authorization header"},
            )

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return JSONResponse(
                status_code=401,
                content={"detail": "Authorization header must use Bearer scheme"},
            )

        try:
            claims = decode_access_token(self._settings, parts[1])
        except PermissionError as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return JSONResponse(
                status_code=401,
                content={"detail": str(exc)},
            )

        request.state.user_id = claims.sub
        request.state.email = claims.email

        return await call_next(request)
