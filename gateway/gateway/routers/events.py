"""Manual event tracking endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from gateway.dependencies import PrincipalDep, SessionDep, SettingsDep
from gateway.middleware.prometheus import TRACKED_EVENTS_TOTAL
from gateway.schemas import ErrorResponse, TrackEventRequest, TrackEventResponse, UsageTotals
from gateway.services.event_tracker import EventTracker
from gateway.services.exceptions import AccountSuspendedError, QuotaExceededError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])

PAYMENT_REQUIRED_CODE = "PAYMENT_REQUIRED"


@router.post(
    "/track",
    status_code=201,
    response_model=TrackEventResponse,
    responses={402: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def track_event(
    body: TrackEventRequest,
    principal: PrincipalDep,
    session: SessionDep,
    settings: SettingsDep,
) -> TrackEventResponse | JSONResponse:
    """Record one billable event for the caller."""
    tracker = EventTracker(session, settings.cost_per_event, settings.default_free_quota)
    try:
        result = await tracker.track(principal, body.source, body.event_type)
    except AccountSuspendedError:
        raise HTTPException(status_code=403, detail="Account suspended") from None
    except QuotaExceededError as exc:
        return JSONResponse(
            status_code=402,
            content=ErrorResponse(detail=exc.reason, code=PAYMENT_REQUIRED_CODE).model_dump(),
        )

    TRACKED_EVENTS_TOTAL.labels(source=body.source.value).inc()
    return TrackEventResponse(event_id=result.event_id, usage=UsageTotals.from_snapshot(result.usage))
