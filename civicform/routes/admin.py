"""
CivicForm Middleware - Operator Routes
========================================

What:  Runtime settings, submission and traffic analytics, persisted errors.
Who:   Operators and the backend, all behind the webhook token.

    GET  /api/settings
    POST /api/settings                   body: {key, value, description?, data_type?}
    GET  /api/analytics/submissions
    GET  /api/analytics/api-usage?hours=N
    GET  /api/logs/errors?limit=N
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from civicform.database import get_db_session
from civicform.schemas.common import (
    ApiUsageStatsResponse,
    AppSettingSaveResponse,
    AppSettingsResponse,
    AppSettingUpdate,
    ErrorLogsResponse,
    ErrorResponse,
)
from civicform.schemas.submission import SubmissionStatsResponse
from civicform.security import require_webhook_token
from civicform.services.app_setting_service import app_setting_service
from civicform.services.log_service import error_log_service, usage_service
from civicform.services.submission_service import submission_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Admin"],
    dependencies=[Depends(require_webhook_token)],
    responses={401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse}},
)


# ── Settings ──────────────────────────────────────────────────────────────


@router.get("/settings", response_model=AppSettingsResponse, summary="List runtime settings")
async def list_settings(db: AsyncSession = Depends(get_db_session)) -> AppSettingsResponse:
    return await app_setting_service.list_all(db)


@router.post(
    "/settings",
    response_model=AppSettingSaveResponse,
    responses={400: {"description": "Missing key or value", "model": ErrorResponse}},
    summary="Create or replace a runtime setting",
)
async def save_setting(
    payload: Optional[AppSettingUpdate] = None,
    db: AsyncSession = Depends(get_db_session),
) -> AppSettingSaveResponse:
    payload = payload or AppSettingUpdate()
    return await app_setting_service.set(
        db=db,
        key=payload.key,
        value=payload.value,
        description=payload.description,
        data_type=payload.data_type,
    )


# ── Analytics ─────────────────────────────────────────────────────────────


@router.get(
    "/analytics/submissions",
    response_model=SubmissionStatsResponse,
    summary="Submission counts by status",
)
async def submission_stats(db: AsyncSession = Depends(get_db_session)) -> SubmissionStatsResponse:
    return await submission_service.stats(db)


@router.get(
    "/analytics/api-usage",
    response_model=ApiUsageStatsResponse,
    summary="Request volume, latency and error rate per endpoint",
)
async def api_usage_stats(
    hours: int = Query(default=24, description="Look-back window in hours"),
    db: AsyncSession = Depends(get_db_session),
) -> ApiUsageStatsResponse:
    return await usage_service.stats(db, hours=hours)


# ── Logs ──────────────────────────────────────────────────────────────────


@router.get("/logs/errors", response_model=ErrorLogsResponse, summary="Most recent persisted errors")
async def recent_errors(
    limit: int = Query(default=50, description="Maximum number of entries (1-1000)"),
    db: AsyncSession = Depends(get_db_session),
) -> ErrorLogsResponse:
    return await error_log_service.recent(db, limit=limit)
