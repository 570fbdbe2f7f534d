"""Shared fixtures for gateway tests.

Provides a file-backed SQLite database per test, a FastAPI app wired to it,
an httpx client, and small factories for accounts, stores and signed
webhook deliveries.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from metering_core.marketplaces.signatures import DigestEncoding, compute_hmac_sha256
from metering_core.models import AccountStatus, Marketplace, StoreSnapshot
from metering_core.state.repository import AccountRepository, BillingAccountRepository
from metering_core.state.sqlite_adapter import create_local_tables, get_local_engine
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gateway.config import GatewaySettings
from gateway.dependencies import get_db_session, get_settings
from gateway.main import create_app
from gateway.security import create_access_token
from gateway.services.store_directory import StoreDirectory

_TEST_JWT_SECRET = "test-secret-key-for-storefront-meter-tests"

# ---------------------------------------------------------------------------
# Settings and database
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path: Path) -> GatewaySettings:
    """Return a settings object suitable for testing."""
    return GatewaySettings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        jwt_secret=SecretStr(_TEST_JWT_SECRET),
    )


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = get_local_engine(tmp_path / "gateway.db")
    await create_local_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Application and client
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(test_settings: GatewaySettings, session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Create a FastAPI app whose sessions come from the per-test database."""
    application = create_app(test_settings)

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    application.dependency_overrides[get_db_session] = _override_session
    application.dependency_overrides[get_settings] = lambda: test_settings
    return application


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def create_account(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[str]]:
    """Return a factory that persists a user and, optionally, a billing account."""

    async def _create(
        user_id: str = "user-1",
        *,
        status: AccountStatus = AccountStatus.ACTIVE,
        billing_status: str | None = None,
        free_quota: int = 100,
    ) -> str:
        async with session_factory() as session:
            await AccountRepository(session).create(f"{user_id}@example.com", user_id=user_id, status=status.value)
            if billing_status is not None:
                await BillingAccountRepository(session).get_or_create(
                    user_id, status=billing_status, free_quota=free_quota
                )
            await session.commit()
        return user_id

    return _create


@pytest.fixture()
def create_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[StoreSnapshot]]:
    """Return a factory that persists a store owned by an existing user."""

    async def _create(
        user_id: str = "user-1",
        marketplace: Marketplace = Marketplace.SHOPIFY,
        *,
        owner_status: AccountStatus = AccountStatus.ACTIVE,
        store_name: str = "Test Shop",
        store_url: str = "https://shop.example.com",
    ) -> StoreSnapshot:
        async with session_factory() as session:
            store = await StoreDirectory(session).create_store(
                user_id, owner_status, marketplace, store_name, store_url
            )
            await session.commit()
        return store

    return _create


@pytest.fixture()
def auth_headers(test_settings: GatewaySettings) -> Callable[[str], dict[str, str]]:
    """Return a factory producing ``Authorization`` headers for a user id."""

    def _headers(user_id: str = "user-1") -> dict[str, str]:
        token = create_access_token(test_settings, user_id, f"{user_id}@example.com")
        return {"Authorization": f"Bearer {token}"}

    return _headers


def encode_payload(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


@pytest.fixture()
def signed_delivery() -> Callable[..., tuple[bytes, dict[str, str], dict[str, str]]]:
    """Return a factory building ``(body, headers, query_params)`` for a store."""

    def _build(
        store: StoreSnapshot,
        payload: dict[str, Any],
        *,
        secret: str | None = None,
    ) -> tuple[bytes, dict[str, str], dict[str, str]]:
        body = encode_payload(payload)
        key = secret if secret is not None else store.webhook_secret
        headers = {"Content-Type": "application/json"}
        query: dict[str, str] = {}
        if store.marketplace_type == Marketplace.SHOPIFY:
            headers["X-Shopify-Hmac-Sha256"] = compute_hmac_sha256(key, body, DigestEncoding.BASE64)
        elif store.marketplace_type == Marketplace.WOOCOMMERCE:
            headers["X-WC-Webhook-Signature"] = compute_hmac_sha256(key, body, DigestEncoding.BASE64)
        elif store.marketplace_type == Marketplace.BIGCOMMERCE:
            headers["X-BC-Webhook-Signature"] = compute_hmac_sha256(key, body, DigestEncoding.HEX)
        else:
            query["secret"] = key
        return body, headers, query

    return _build
