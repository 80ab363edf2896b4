"""
CivicForm Middleware - Submission Queue Routes
================================================

What:  Enqueue, drain, acknowledge and list form submissions.
Who:   The frontend enqueues and lists (submission token); the polling
       collector drains and acknowledges (webhook token).

    POST  /api/webform/{webform_id}/submission    body: {submission_data}
    POST  /api/webform/submissions                body: filters
    GET   /api/submissions/pending?limit=N
    PATCH /api/submissions/{submission_id}/status body: {status, error_message?}
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from civicform.database import get_db_session
from civicform.middleware.client_info import get_client_ip, get_user_agent
from civicform.schemas.common import ErrorResponse
from civicform.schemas.submission import (
    PendingSubmissionsResponse,
    SubmissionCreateRequest,
    SubmissionCreateResponse,
    SubmissionFilters,
    SubmissionListResponse,
    SubmissionStatusResponse,
    SubmissionStatusUpdate,
)
from civicform.security import require_submission_token, require_webhook_token
from civicform.services.submission_service import submission_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Submissions"])


@router.post(
    "/webform/{webform_id}/submission",
    response_model=SubmissionCreateResponse,
    dependencies=[Depends(require_submission_token)],
    responses={
        400: {"description": "Missing submission_data", "model": ErrorResponse},
        401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse},
        500: {"description": "Store failure", "model": ErrorResponse},
    },
    summary="Queue a form submission",
)
async def create_submission(
    webform_id: str,
    request: Request,
    payload: Optional[SubmissionCreateRequest] = None,
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionCreateResponse:
    """
    Store one submission as `pending`.

    The server sets `timestamp` and `submission_id` inside the stored data;
    values sent by the caller for those keys are replaced.
    """
    return await submission_service.enqueue(
        db=db,
        form_id=webform_id,
        data=payload.submission_data if payload is not None else None,
        user_agent=get_user_agent(request),
        ip_address=get_client_ip(request),
    )


@router.post(
    "/webform/submissions",
    response_model=SubmissionListResponse,
    dependencies=[Depends(require_submission_token)],
    responses={
        400: {"description": "Malformed filter", "model": ErrorResponse},
        401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse},
    },
    summary="List submissions matching filters",
)
async def list_submissions(
    filters: Optional[SubmissionFilters] = None,
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionListResponse:
    return await submission_service.filtered_list(db=db, filters=filters or SubmissionFilters())


@router.get(
    "/submissions/pending",
    response_model=PendingSubmissionsResponse,
    dependencies=[Depends(require_webhook_token)],
    responses={
        400: {"description": "limit outside 1..1000", "model": ErrorResponse},
        401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse},
    },
    summary="Fetch pending submissions, oldest first",
)
async def get_pending_submissions(
    limit: int = Query(default=100, description="Maximum number of submissions (1-1000)"),
    db: AsyncSession = Depends(get_db_session),
) -> PendingSubmissionsResponse:
    """
    Hand the oldest pending submissions to the polling collector.

    In the default `tracked` delivery mode this is a pure read; the collector
    acknowledges each item with PATCH .../status. In `drain` mode the
    returned items are deleted.
    """
    return await submission_service.drain_pending(db=db, limit=limit)


@router.patch(
    "/submissions/{submission_id}/status",
    response_model=SubmissionStatusResponse,
    dependencies=[Depends(require_webhook_token)],
    responses={
        400: {"description": "Status not one of processing, sent, failed", "model": ErrorResponse},
        401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse},
        404: {"description": "Unknown submission", "model": ErrorResponse},
    },
    summary="Report the delivery status of a submission",
)
async def update_submission_status(
    submission_id: str,
    payload: Optional[SubmissionStatusUpdate] = None,
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionStatusResponse:
    payload = payload or SubmissionStatusUpdate()
    return await submission_service.set_status(
        db=db,
        submission_id=submission_id,
        status=payload.status,
        error_message=payload.error_message,
    )
