"""Store lookup and owner-scoped store management."""

from __future__ import annotations

import logging

from metering_core.models import AccountStatus, Marketplace, StoreSnapshot, StoreStatus
from metering_core.state.repository import StoreRepository, WebhookEventRepository
from metering_core.state.tables import StoreTable, WebhookEventTable
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.services.exceptions import StoreNotFoundError

logger = logging.getLogger(__name__)


def _snapshot(row: StoreTable, owner_status: str | AccountStatus) -> StoreSnapshot:
    return StoreSnapshot(
        id=row.id,
        user_id=row.user_id,
        marketplace_type=Marketplace(row.marketplace_type),
        store_name=row.store_name,
        store_url=row.store_url,
        status=StoreStatus(row.status),
        webhook_secret=row.webhook_secret,
        owner_status=AccountStatus(owner_status),
        created_at=row.created_at,
    )


class StoreDirectory:
    """Resolve stores by id and manage them on behalf of their owner.

    Ownership checks raise :class:`PermissionError`, which the application
    maps to HTTP 403; a missing store raises :class:`StoreNotFoundError`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._stores = StoreRepository(session)
        self._webhook_events = WebhookEventRepository(session)

    async def get_snapshot(self, store_id: str) -> StoreSnapshot | None:
        """Read a store and its owner's status as one immutable value."""
        found = await self._stores.get_with_owner_status(store_id)
        if found is None:
            return None
        row, owner_status = found
        return _snapshot(row, owner_status)

    async def create_store(
        self,
        user_id: str,
        owner_status: AccountStatus,
        marketplace: Marketplace,
        store_name: str,
        store_url: str,
    ) -> StoreSnapshot:
        row = await self._stores.create(user_id, marketplace.value, store_name, store_url)
        logger.info(
            "Store created: store_id=%s user_id=%s marketplace=%s",
            row.id,
            user_id,
            marketplace.value,
        )
        return _snapshot(row, owner_status)

    async def list_stores(self, user_id: str, owner_status: AccountStatus) -> list[StoreSnapshot]:
        rows = await self._stores.list_for_user(user_id)
        return [_snapshot(row, owner_status) for row in rows]

    async def get_owned_store(self, user_id: str, store_id: str) -> StoreSnapshot:
        """Return *store_id* if it belongs to *user_id*.

        Raises
        ------
        StoreNotFoundError
            If the store does not exist.
        PermissionError
            If the store belongs to another user.
        """
        snapshot = await self.get_snapshot(store_id)
        if snapshot is None:
            raise StoreNotFoundError(store_id)
        if snapshot.user_id != user_id:
            logger.warning("User %s attempted to access store %s owned by another user", user_id, store_id)
            raise PermissionError(f"Store {store_id} belongs to another user")
        return snapshot

    async def set_status(self, user_id: str, store_id: str, status: StoreStatus) -> StoreSnapshot:
        current = await self.get_owned_store(user_id, store_id)
        row = await self._stores.set_status(store_id, status.value)
        if row is None:
            raise StoreNotFoundError(store_id)
        logger.info("Store status updated: store_id=%s status=%s", store_id, status.value)
        return _snapshot(row, current.owner_status)

    async def delete_store(self, user_id: str, store_id: str) -> None:
        await self.get_owned_store(user_id, store_id)
        if not await self._stores.delete(store_id):
            raise StoreNotFoundError(store_id)
        logger.info("Store deleted: store_id=%s user_id=%s", store_id, user_id)

    async def list_webhook_events(
        self,
        user_id: str,
        store_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookEventTable]:
        await self.get_owned_store(user_id, store_id)
        return await self._webhook_events.list_for_store(store_id, limit=limit, offset=offset)
