"""
CivicForm Middleware - Structure Cache Schemas
================================================

What:  Pydantic models for the structure push/read endpoints.
Why:   The stored structure is opaque; these models only shape the envelope
       around it (identifiers, version, timestamps).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class StructureSaveResponse(BaseModel):
    """Returned by POST /api/webform/{id}/structure after an upsert."""
    success: bool = Field(default=True)
    message: str = Field(default="Webform structure received and saved")
    webform_id: str = Field(description="Form identifier the structure was stored under")
    id: int = Field(description="Row id of the stored structure")
    version: int = Field(description="Advisory version counter after this write")


class StructureResponse(BaseModel):
    """
    What:  A cached form structure as served to the frontend.
    Who:   Returned by GET /api/webform/{id}/structure.

    `structure` is returned exactly as it was pushed (no merge, no defaults).
    """
    webform_id: str = Field(description="Form identifier")
    structure: Dict[str, Any] = Field(description="The pushed structure document")
    version: int = Field(description="Advisory version counter")
    created_at: datetime = Field(description="First push (UTC)")
    updated_at: datetime = Field(description="Latest push (UTC)")


class LegacyWebhookRequest(BaseModel):
    """
    Body of POST /api/webhook, the pre-path-parameter structure push.

    Both fields are optional at the schema level so that a missing field is
    reported as a 400 validation error by the service, not a schema error.
    """
    form_id: Optional[str] = Field(default=None, description="Form identifier")
    submission_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Structure document (named submission_data for compatibility)",
    )
