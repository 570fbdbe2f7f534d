"""FastAPI dependency injection for database sessions, settings and the caller."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from metering_core.models import AccountStatus, Principal
from metering_core.state.database import get_engine, get_session_factory
from metering_core.state.repository import AccountRepository
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gateway.config import GatewaySettings, load_gateway_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: GatewaySettings | None = None


def get_settings() -> GatewaySettings:
    """Return the cached :class:`GatewaySettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_gateway_settings()
    return _settings_cache


SettingsDep = Annotated[GatewaySettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: GatewaySettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    _session_factory = get_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped ``AsyncSession``.

    The session commits on clean exit and rolls back on exception.  Services
    that manage their own transaction boundaries (the webhook processor)
    commit explicitly; the final commit here is then a no-op.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    session = _session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Authenticated caller
# ---------------------------------------------------------------------------


def get_user_id(request: Request) -> str:
    """Extract the authenticated user id set by ``AuthenticationMiddleware``."""
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return str(user_id)


UserIdDep = Annotated[str, Depends(get_user_id)]


async def get_current_principal(user_id: UserIdDep, session: SessionDep) -> Principal:
    """Resolve the caller's account from the identity mirror.

    The token proves identity; the account row supplies the current status,
    so a suspension takes effect without waiting for tokens to expire.
    """
    account = await AccountRepository(session).get(user_id)
    if account is None:
        logger.warning("Token subject %s has no account", user_id)
        raise HTTPException(status_code=401, detail="Unknown account")
    return Principal(id=account.id, email=account.email, status=AccountStatus(account.status))


PrincipalDep = Annotated[Principal, Depends(get_current_principal)]
