"""End-to-end tests for ``POST /webhooks/{marketplace}/{store_id}``."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import AsyncClient
from metering_core.models import Marketplace, StoreSnapshot
from metering_core.state.repository import WebhookEventRepository
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.config import GatewaySettings

Delivery = Callable[..., tuple[bytes, dict[str, str], dict[str, str]]]

_PAID_ORDER: dict[str, Any] = {"id": 1001, "financial_status": "paid", "name": "#1001"}


@pytest_asyncio.fixture()
async def shopify_store(
    create_account: Callable[..., Awaitable[str]],
    create_store: Callable[..., Awaitable[StoreSnapshot]],
) -> StoreSnapshot:
    await create_account("user-1")
    return await create_store("user-1", Marketplace.SHOPIFY)


async def _post(
    client: AsyncClient,
    store: StoreSnapshot,
    delivery: Delivery,
    payload: dict[str, Any],
    *,
    path_marketplace: str | None = None,
    secret: str | None = None,
) -> Any:
    body, headers, query = delivery(store, payload, secret=secret)
    marketplace = path_marketplace or store.marketplace_type.value.lower()
    return await client.post(
        f"/webhooks/{marketplace}/{store.id}",
        content=body,
        headers=headers,
        params=query,
    )


class TestShopifyDelivery:
    @pytest.mark.asyncio
    async def test_processed_then_duplicate(
        self,
        client: AsyncClient,
        shopify_store: StoreSnapshot,
        signed_delivery: Delivery,
        auth_headers: Callable[[str], dict[str, str]],
    ) -> None:
        first = await _post(client, shopify_store, signed_delivery, _PAID_ORDER)
        assert first.status_code == 200
        body = first.json()
        assert body["status"] == "processed"
        assert body["message"] == "Webhook processed successfully"
        assert body["data"]["usage"]["eventCount"] == 1
        assert body["data"]["usage"]["estimatedCost"] == pytest.approx(0.005)
        assert body["data"]["trackedEventId"]
        assert body["data"]["webhookEventId"]

        second = await _post(client, shopify_store, signed_delivery, _PAID_ORDER)
        assert second.status_code == 200
        assert second.json() == {
            "status": "ignored",
            "reason": "duplicate order",
            "message": "ignored: duplicate order",
        }

        usage = await client.get("/api/v1/usage/current", headers=auth_headers("user-1"))
        assert usage.json()["currentMonth"]["eventCount"] == 1

    @pytest.mark.asyncio
    async def test_marketplace_path_is_case_insensitive(
        self, client: AsyncClient, shopify_store: StoreSnapshot, signed_delivery: Delivery
    ) -> None:
        response = await _post(client, shopify_store, signed_delivery, _PAID_ORDER, path_marketplace="Shopify")
        assert response.status_code == 200
        assert response.json()["status"] == "processed"

    @pytest.mark.asyncio
    async def test_unpaid_order_is_acknowledged(
        self, client: AsyncClient, shopify_store: StoreSnapshot, signed_delivery: Delivery
    ) -> None:
        response = await _post(client, shopify_store, signed_delivery, {"id": 5, "financial_status": "pending"})
        assert response.status_code == 200
        assert response.json()["reason"] == "order not paid"

    @pytest.mark.asyncio
    async def test_no_bearer_token_needed(
        self, client: AsyncClient, shopify_store: StoreSnapshot, signed_delivery: Delivery
    ) -> None:
        response = await _post(client, shopify_store, signed_delivery, _PAID_ORDER)
        assert response.status_code != 401


class TestRejectedDeliveries:
    @pytest.mark.asyncio
    async def test_unknown_store_returns_404(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/shopify/no-such-store", content=b"{}")
        assert response.status_code == 404
        assert response.json() == {"detail": "Store not found"}

    @pytest.mark.asyncio
    async def test_unsupported_marketplace_returns_400(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/etsy/some-store", content=b"{}")
        assert response.status_code == 400
        assert "Unsupported marketplace" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_marketplace_mismatch_returns_400(
        self, client: AsyncClient, shopify_store: StoreSnapshot, signed_delivery: Delivery
    ) -> None:
        response = await _post(client, shopify_store, signed_delivery, _PAID_ORDER, path_marketplace="woocommerce")
        assert response.status_code == 400
        assert response.json() == {"detail": "Marketplace type mismatch"}

    @pytest.mark.asyncio
    async def test_bad_signature_returns_401(
        self, client: AsyncClient, shopify_store: StoreSnapshot, signed_delivery: Delivery
    ) -> None:
        response = await _post(client, shopify_store, signed_delivery, _PAID_ORDER, secret="wrong")
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid webhook signature"}

    @pytest.mark.asyncio
    async def test_rejected_delivery_is_audited(
        self,
        client: AsyncClient,
        shopify_store: StoreSnapshot,
        signed_delivery: Delivery,
        auth_headers: Callable[[str], dict[str, str]],
    ) -> None:
        await _post(client, shopify_store, signed_delivery, _PAID_ORDER, secret="wrong")

        response = await client.get(
            f"/api/v1/stores/{shopify_store.id}/webhook-events",
            headers=auth_headers("user-1"),
        )
        assert response.status_code == 200
        [event] = response.json()["events"]
        assert event["verified"] is False
        assert event["processed"] is False


class TestMagentoDelivery:
    @pytest.mark.asyncio
    async def test_secret_query_parameter(
        self,
        client: AsyncClient,
        create_account: Callable[..., Awaitable[str]],
        create_store: Callable[..., Awaitable[StoreSnapshot]],
        signed_delivery: Delivery,
    ) -> None:
        await create_account("user-1")
        store = await create_store("user-1", Marketplace.MAGENTO)
        payload = {"entity_id": 42, "state": "complete"}

        accepted = await _post(client, store, signed_delivery, payload)
        assert accepted.status_code == 200
        assert accepted.json()["status"] == "processed"

        forged = await _post(client, store, signed_delivery, {"entity_id": 43, "state": "complete"}, secret="guess")
        assert forged.status_code == 401


class TestBodySizeLimit:
    @pytest.mark.asyncio
    async def test_declared_oversize_body_is_refused_without_audit(
        self, client: AsyncClient, test_settings: GatewaySettings, session: AsyncSession
    ) -> None:
        test_settings.webhook_max_body_bytes = 1024

        response = await client.post("/webhooks/shopify/no-such-store", content=b"x" * 2048)

        assert response.status_code == 413
        assert response.json() == {"detail": "Webhook payload too large"}
        assert await WebhookEventRepository(session).list_for_store("no-such-store") == []

    @pytest.mark.asyncio
    async def test_chunked_oversize_body_is_refused(
        self, client: AsyncClient, test_settings: GatewaySettings, session: AsyncSession
    ) -> None:
        test_settings.webhook_max_body_bytes = 1024

        async def _chunks() -> AsyncIterator[bytes]:
            for _ in range(4):
                yield b"x" * 512

        response = await client.post("/webhooks/shopify/no-such-store", content=_chunks())

        assert response.status_code == 413
        assert await WebhookEventRepository(session).list_for_store("no-such-store") == []

    @pytest.mark.asyncio
    async def test_body_at_the_limit_is_accepted(
        self,
        client: AsyncClient,
        test_settings: GatewaySettings,
        shopify_store: StoreSnapshot,
        signed_delivery: Delivery,
    ) -> None:
        body, _, _ = signed_delivery(shopify_store, _PAID_ORDER)
        test_settings.webhook_max_body_bytes = len(body)

        response = await _post(client, shopify_store, signed_delivery, _PAID_ORDER)

        assert response.status_code == 200
        assert response.json()["status"] == "processed"

    @pytest.mark.asyncio
    async def test_malformed_content_length_returns_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/webhooks/shopify/no-such-store",
            content=b"{}",
            headers={"Content-Length": "abc"},
        )
        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid Content-Length header"}
