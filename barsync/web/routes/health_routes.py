"""Health and liveness routes."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger

from barsync import __version__
from barsync.web.models import APIResponse
from barsync.web.utils import get_request_id, get_service, outcome_response

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Store and upstream reachability.

    Responds 200 with ``healthy: false`` when a dependency is down so probes
    can tell a degraded service from a dead one.
    """
    outcome = await get_service(request).health()
    if outcome.ok:
        outcome.data["version"] = __version__
        outcome.data["uptime_seconds"] = round(time.monotonic() - request.app.state.started_at, 3)
        logger.info("Health check completed: {status}", status=outcome.message)
    return outcome_response(request, outcome)


@router.get("/health/live", response_model=APIResponse)
async def liveness_check(request: Request) -> APIResponse:
    return APIResponse(success=True, data={"alive": True}, message="alive", request_id=get_request_id(request))
