"""
CivicForm Middleware - Health Check Route
===========================================

What:  Liveness and store-reachability probe for load balancers and monitors.
How:   Runs SELECT 1 against the store.

    healthy    store reachable        HTTP 200
    unhealthy  store unreachable      HTTP 503

The response never includes the underlying error text; it is logged and
persisted to error_logs instead.
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from civicform import __version__
from civicform.database import engine
from civicform.schemas.common import HealthResponse
from civicform.services.log_service import error_log_service
from civicform.timeutils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Store unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(request: Request):
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))
        await error_log_service.record("error", "Health check failed", error=e, request=request)

    body = HealthResponse(
        status=overall,
        timestamp=utcnow(),
        database=db_status,
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall != "healthy":
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body
