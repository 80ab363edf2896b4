"""
CivicForm Middleware - Structure Cache Routes
===============================================

What:  Push and read cached form structures.
Who:   The backend pushes (webhook token); the public frontend reads.

    POST /api/webform/{webform_id}/structure   body: the structure document
    GET  /api/webform/{webform_id}/structure
    POST /api/webhook                          body: {form_id, submission_data}
                                               (older backends; same upsert)
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from civicform.database import get_db_session
from civicform.exceptions import ValidationError
from civicform.schemas.common import ErrorResponse
from civicform.schemas.structure import (
    LegacyWebhookRequest,
    StructureResponse,
    StructureSaveResponse,
)
from civicform.security import require_webhook_token
from civicform.services.structure_service import structure_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Structures"])


@router.post(
    "/webform/{webform_id}/structure",
    response_model=StructureSaveResponse,
    dependencies=[Depends(require_webhook_token)],
    responses={
        400: {"description": "Empty or non-object body", "model": ErrorResponse},
        401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse},
        500: {"description": "Store failure", "model": ErrorResponse},
    },
    summary="Push a form structure",
)
async def save_structure(
    webform_id: str,
    document: Any = Body(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> StructureSaveResponse:
    """
    Replace the cached structure for `webform_id` with the request body.

    The body is stored verbatim; any JSON object with at least one key is
    accepted.
    """
    return await structure_service.save(db=db, form_id=webform_id, document=document)


@router.get(
    "/webform/{webform_id}/structure",
    response_model=StructureResponse,
    responses={
        404: {"description": "No structure cached for this form", "model": ErrorResponse},
        500: {"description": "Store failure", "model": ErrorResponse},
    },
    summary="Read a cached form structure",
)
async def get_structure(
    webform_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> StructureResponse:
    return await structure_service.get(db=db, form_id=webform_id)


@router.post(
    "/webhook",
    response_model=StructureSaveResponse,
    dependencies=[Depends(require_webhook_token)],
    responses={
        400: {"description": "Missing form_id or submission_data", "model": ErrorResponse},
        401: {"description": "Missing or wrong X-Auth-Token", "model": ErrorResponse},
    },
    summary="Push a form structure (legacy body format)",
)
async def legacy_webhook(
    payload: Optional[LegacyWebhookRequest] = None,
    db: AsyncSession = Depends(get_db_session),
) -> StructureSaveResponse:
    if payload is None or not payload.form_id or not payload.submission_data:
        raise ValidationError(message="Missing form_id or submission_data")
    return await structure_service.save(
        db=db, form_id=payload.form_id, document=payload.submission_data
    )
