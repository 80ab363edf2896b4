"""
CivicForm Middleware - Submission Queue Schemas
=================================================

What:  Request/response models for enqueue, pending drain, status updates,
       filtered listing and submission analytics.
How:   Structural problems in a body (wrong JSON type, unknown filter status,
       unparseable date) surface as RequestValidationError, which main.py maps
       to a 400 `validation_error` response.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from civicform.models.submission import SubmissionStatus

# Transitions a collector may request; `pending` is the initial state only
SETTABLE_STATUSES = (
    SubmissionStatus.PROCESSING.value,
    SubmissionStatus.SENT.value,
    SubmissionStatus.FAILED.value,
)


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class SubmissionCreateRequest(BaseModel):
    """
    Body of POST /api/webform/{id}/submission.

    submission_data is optional here so that "missing" is reported by the
    service with a clear message rather than by the schema layer.
    """
    submission_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="The user's form answers (JSON object)",
    )


class SubmissionStatusUpdate(BaseModel):
    """
    Body of PATCH /api/submissions/{id}/status.

    `status` is a free string on purpose: an unknown value must produce a 400
    from the service without touching the record.
    """
    status: Optional[str] = Field(default=None, description="processing, sent or failed")
    error_message: Optional[str] = Field(default=None, description="Collector-side failure detail")


class SubmissionFilters(BaseModel):
    """
    Body of POST /api/webform/submissions. All filters are conjunctive.

    Dates are inclusive bounds on created_at (ISO 8601).
    """
    limit: int = Field(default=100, ge=1, le=1000)
    status: Optional[str] = Field(default=None)
    form_id: Optional[str] = Field(default=None)
    start_date: Optional[datetime] = Field(default=None)
    end_date: Optional[datetime] = Field(default=None)

    model_config = {"extra": "ignore"}

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        valid = {s.value for s in SubmissionStatus}
        if v not in valid:
            raise ValueError(f"Invalid status '{v}'. Must be one of: {sorted(valid)}")
        return v


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class SubmissionCreateResponse(BaseModel):
    success: bool = Field(default=True)
    message: str = Field(default="Submission received and saved")
    submission_id: str = Field(description="Server-generated submission identifier")
    db_id: int = Field(description="Numeric row id")


class PendingSubmission(BaseModel):
    """One queued submission as handed to the polling collector."""
    id: int
    submission_id: str
    form_id: str
    data: Dict[str, Any]
    status: str
    created_at: datetime
    retry_count: int


class PendingSubmissionsResponse(BaseModel):
    submissions: List[PendingSubmission]
    count: int
    # True when the returned rows were removed from the queue (drain mode)
    drained: bool = Field(default=False)


class SubmissionStatusResponse(BaseModel):
    success: bool = Field(default=True)
    message: str
    id: str = Field(description="The submission identifier that was updated")
    status: str
    retry_count: int
    sent_at: Optional[datetime] = None


class SubmissionRecord(BaseModel):
    """Full submission row for operator listings."""
    id: int
    submission_id: str
    form_id: str
    data: Dict[str, Any]
    status: str
    retry_count: int
    created_at: datetime
    updated_at: datetime
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None


class SubmissionListResponse(BaseModel):
    submissions: List[SubmissionRecord]
    count: int
    filters: Dict[str, Any]


class SubmissionStat(BaseModel):
    status: str
    count: int


class SubmissionStatsResponse(BaseModel):
    stats: List[SubmissionStat]
