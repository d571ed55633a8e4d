"""
PracticeSync — Health Check Route
===================================

What:  GET /health for container health checks and uptime monitors.
How:   SELECT 1 against the local store, plus the Halaxy configuration and
       cached-token state. No Halaxy request is made: a check every few
       seconds must not eat the remote rate limit.

Status levels:
    healthy      database reachable and Halaxy configured
    degraded     database reachable, Halaxy not configured (sync is a no-op)
    unhealthy    database unreachable (503)
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from practice_sync import __version__
from practice_sync.schemas.sync import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(request: Request):
    state = request.app.state
    db_status = "connected"
    overall = "healthy"

    try:
        async with state.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    remote = state.sync_service.remote
    if remote.is_configured:
        halaxy_status = "configured"
    else:
        halaxy_status = "not_configured"
        if overall == "healthy":
            overall = "degraded"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        halaxy=halaxy_status,
        token=remote.token_status(),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body
