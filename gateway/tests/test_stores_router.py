"""Tests for the owner-scoped ``/api/v1/stores`` endpoints."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest
from httpx import AsyncClient
from metering_core.models import Marketplace, StoreSnapshot

AuthHeaders = Callable[[str], dict[str, str]]

_NEW_STORE = {
    "marketplaceType": "WOOCOMMERCE",
    "storeName": "  Garden Supplies  ",
    "storeUrl": "https://garden.example.com",
}


class TestCreateStore:
    @pytest.mark.asyncio
    async def test_create_returns_secret_and_webhook_url(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        response = await client.post("/api/v1/stores", json=_NEW_STORE, headers=auth_headers("user-1"))

        assert response.status_code == 201
        body = response.json()
        assert body["storeName"] == "Garden Supplies"
        assert body["marketplaceType"] == "WOOCOMMERCE"
        assert body["status"] == "ACTIVE"
        assert len(body["webhookSecret"]) == 64
        assert body["webhookUrl"] == f"http://test/webhooks/woocommerce/{body['id']}"

    @pytest.mark.asyncio
    async def test_rejects_invalid_url(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        payload = {**_NEW_STORE, "storeUrl": "not a url"}
        response = await client.post("/api/v1/stores", json=payload, headers=auth_headers("user-1"))
        assert response.status_code == 422


class TestStoreOwnership:
    @pytest.mark.asyncio
    async def test_list_only_own_stores(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        create_store: Callable[..., Awaitable[StoreSnapshot]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        await create_account("user-2")
        mine = await create_store("user-1", Marketplace.SHOPIFY)
        await create_store("user-2", Marketplace.MAGENTO)

        response = await client.get("/api/v1/stores", headers=auth_headers("user-1"))
        assert response.status_code == 200
        assert [store["id"] for store in response.json()["stores"]] == [mine.id]

    @pytest.mark.asyncio
    async def test_other_users_store_is_forbidden(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        create_store: Callable[..., Awaitable[StoreSnapshot]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        await create_account("user-2")
        theirs = await create_store("user-2", Marketplace.SHOPIFY)
        headers = auth_headers("user-1")

        assert (await client.get(f"/api/v1/stores/{theirs.id}", headers=headers)).status_code == 403
        assert (await client.delete(f"/api/v1/stores/{theirs.id}", headers=headers)).status_code == 403
        patched = await client.patch(
            f"/api/v1/stores/{theirs.id}/status", json={"status": "DISABLED"}, headers=headers
        )
        assert patched.status_code == 403
        events = await client.get(f"/api/v1/stores/{theirs.id}/webhook-events", headers=headers)
        assert events.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_store_returns_404(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        response = await client.get("/api/v1/stores/does-not-exist", headers=auth_headers("user-1"))
        assert response.status_code == 404
        assert response.json() == {"detail": "Store not found"}


class TestStoreLifecycle:
    @pytest.mark.asyncio
    async def test_disable_then_delete(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        create_store: Callable[..., Awaitable[StoreSnapshot]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        store = await create_store("user-1", Marketplace.BIGCOMMERCE)
        headers = auth_headers("user-1")

        patched = await client.patch(
            f"/api/v1/stores/{store.id}/status", json={"status": "DISABLED"}, headers=headers
        )
        assert patched.status_code == 200
        assert patched.json()["status"] == "DISABLED"

        deleted = await client.delete(f"/api/v1/stores/{store.id}", headers=headers)
        assert deleted.status_code == 204
        assert (await client.get(f"/api/v1/stores/{store.id}", headers=headers)).status_code == 404

    @pytest.mark.asyncio
    async def test_webhook_events_paging(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        create_store: Callable[..., Awaitable[StoreSnapshot]],
        auth_headers: AuthHeaders,
    ) -> None:
        await create_account("user-1")
        store = await create_store("user-1", Marketplace.SHOPIFY)
        for _ in range(3):
            await client.post(f"/webhooks/shopify/{store.id}", content=b"{}")

        headers = auth_headers("user-1")
        page = await client.get(
            f"/api/v1/stores/{store.id}/webhook-events", params={"limit": 2, "offset": 0}, headers=headers
        )
        assert page.status_code == 200
        assert len(page.json()["events"]) == 2
        rest = await client.get(
            f"/api/v1/stores/{store.id}/webhook-events", params={"limit": 2, "offset": 2}, headers=headers
        )
        assert len(rest.json()["events"]) == 1
