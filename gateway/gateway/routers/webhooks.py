"""Public marketplace webhook endpoint.

``POST /webhooks/{marketplace}/{store_id}`` authenticates by per-store
signature, not bearer token.  Ignored deliveries answer 200 so that the
marketplace does not retry them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from metering_core.models import Marketplace, WebhookOutcome

from gateway.dependencies import SessionDep, SettingsDep
from gateway.middleware.prometheus import TRACKED_EVENTS_TOTAL, WEBHOOK_OUTCOMES_TOTAL
from gateway.schemas import (
    ErrorResponse,
    UsageTotals,
    WebhookIgnoredResponse,
    WebhookProcessedData,
    WebhookProcessedResponse,
)
from gateway.services.webhook_processor import WebhookProcessor, WebhookRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _read_bounded_body(request: Request, limit: int) -> bytes | None:
    """Read the body byte-for-byte, or return ``None`` once it exceeds *limit*.

    A declared ``Content-Length`` over the limit is refused without reading;
    chunked bodies are counted as they stream in.
    """
    declared = request.headers.get("content-length")
    if declared is not None and int(declared) > limit:
        return None
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


@router.post(
    "/{marketplace}/{store_id}",
    responses={
        200: {"model": WebhookProcessedResponse},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
)
async def receive_webhook(
    marketplace: str,
    store_id: str,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
) -> JSONResponse:
    """Receive an order webhook from a connected storefront."""
    limit = settings.webhook_max_body_bytes
    try:
        raw_body = await _read_bounded_body(request, limit)
    except ValueError:
        return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length header"})
    if raw_body is None:
        logger.warning("Rejected webhook to %s: body exceeds limit %d", request.url.path, limit)
        return JSONResponse(status_code=413, content={"detail": "Webhook payload too large"})

    try:
        resolved = Marketplace.from_path(marketplace)
    except ValueError as exc:
        logger.warning("Webhook for unsupported marketplace %r (store_id=%s)", marketplace, store_id)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    processor = WebhookProcessor(session, settings.cost_per_event)
    result = await processor.process(
        WebhookRequest(
            marketplace=resolved,
            store_id=store_id,
            raw_body=raw_body,
            headers=dict(request.headers),
            query_params=dict(request.query_params),
        )
    )
    WEBHOOK_OUTCOMES_TOTAL.labels(marketplace=resolved.value, outcome=result.outcome.value).inc()

    if result.outcome == WebhookOutcome.REJECTED:
        return JSONResponse(status_code=result.status_code, content={"detail": result.message})

    body: WebhookProcessedResponse | WebhookIgnoredResponse
    if result.outcome == WebhookOutcome.IGNORED:
        body = WebhookIgnoredResponse(reason=result.reason or "", message=result.message)
    else:
        TRACKED_EVENTS_TOTAL.labels(source=resolved.value).inc()
        body = WebhookProcessedResponse(
            message=result.message,
            data=WebhookProcessedData(
                webhook_event_id=result.webhook_event_id or "",
                tracked_event_id=result.tracked_event_id or "",
                usage=UsageTotals.from_snapshot(result.usage),
            ),
        )
    return JSONResponse(status_code=result.status_code, content=body.model_dump(mode="json", by_alias=True))
