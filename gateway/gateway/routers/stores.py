"""Owner-scoped store management.

Creating a store generates its webhook secret and returns the URL the
merchant registers with their storefront platform.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request, Response
from metering_core.models import StoreSnapshot

from gateway.dependencies import PrincipalDep, SessionDep
from gateway.schemas import (
    StoreCreateRequest,
    StoreListResponse,
    StoreResponse,
    StoreStatusUpdateRequest,
    WebhookEventListResponse,
    WebhookEventResponse,
)
from gateway.services.store_directory import StoreDirectory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stores", tags=["stores"])


def _webhook_url(request: Request, store: StoreSnapshot) -> str:
    base = str(request.base_url).rstrip("/")
    return f"{base}/webhooks/{store.marketplace_type.value.lower()}/{store.id}"


def _to_response(request: Request, store: StoreSnapshot) -> StoreResponse:
    return StoreResponse(
        id=store.id,
        marketplace_type=store.marketplace_type,
        store_name=store.store_name,
        store_url=store.store_url,
        status=store.status,
        webhook_secret=store.webhook_secret,
        webhook_url=_webhook_url(request, store),
        created_at=store.created_at,
    )


@router.post("", status_code=201, response_model=StoreResponse)
async def create_store(
    body: StoreCreateRequest,
    request: Request,
    principal: PrincipalDep,
    session: SessionDep,
) -> StoreResponse:
    store = await StoreDirectory(session).create_store(
        principal.id,
        principal.status,
        body.marketplace_type,
        body.store_name,
        str(body.store_url),
    )
    return _to_response(request, store)


@router.get("", response_model=StoreListResponse)
async def list_stores(request: Request, principal: PrincipalDep, session: SessionDep) -> StoreListResponse:
    stores = await StoreDirectory(session).list_stores(principal.id, principal.status)
    return StoreListResponse(stores=[_to_response(request, store) for store in stores])


@router.get("/{store_id}", response_model=StoreResponse)
async def get_store(
    store_id: str,
    request: Request,
    principal: PrincipalDep,
    session: SessionDep,
) -> StoreResponse:
    store = await StoreDirectory(session).get_owned_store(principal.id, store_id)
    return _to_response(request, store)


@router.patch("/{store_id}/status", response_model=StoreResponse)
async def update_store_status(
    store_id: str,
    body: StoreStatusUpdateRequest,
    request: Request,
    principal: PrincipalDep,
    session: SessionDep,
) -> StoreResponse:
    """Enable or disable webhook processing for a store."""
    store = await StoreDirectory(session).set_status(principal.id, store_id, body.status)
    return _to_response(request, store)


@router.delete("/{store_id}", status_code=204)
async def delete_store(store_id: str, principal: PrincipalDep, session: SessionDep) -> Response:
    """Delete a store.  Its webhook audit history is kept."""
    await StoreDirectory(session).delete_store(principal.id, store_id)
    return Response(status_code=204)


@router.get("/{store_id}/webhook-events", response_model=WebhookEventListResponse)
async def list_webhook_events(
    store_id: str,
    principal: PrincipalDep,
    session: SessionDep,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> WebhookEventListResponse:
    rows = await StoreDirectory(session).list_webhook_events(principal.id, store_id, limit=limit, offset=offset)
    return WebhookEventListResponse(events=[WebhookEventResponse.model_validate(row) for row in rows])
