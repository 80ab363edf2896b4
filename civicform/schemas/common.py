"""
CivicForm Middleware - Shared and Operational Schemas
=======================================================

What:  Error envelope, health check, runtime settings, usage analytics and
       error-log models.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Error / Health
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "not_found",
            "message": "webform structure with ID 'contact' was not found",
            "details": {"resource": "webform structure", "resource_id": "contact"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="healthy or unhealthy")
    timestamp: datetime = Field(description="Time of the check (UTC)")
    database: str = Field(description="connected or disconnected")
    version: str = Field(description="Application version")
    uptime_seconds: float = Field(description="Seconds since the process started")


# ══════════════════════════════════════════════════════════════════════════
# Runtime Settings
# ══════════════════════════════════════════════════════════════════════════


class AppSettingItem(BaseModel):
    key: str
    value: Any
    data_type: str
    description: Optional[str] = None


class AppSettingsResponse(BaseModel):
    settings: List[AppSettingItem]


class AppSettingUpdate(BaseModel):
    """Body of POST /api/settings. `value` is required; `null` is rejected by the service."""
    key: Optional[str] = Field(default=None)
    value: Any = Field(default=None)
    description: Optional[str] = Field(default=None)
    data_type: str = Field(default="string", description="string, number, boolean or json")


class AppSettingSaveResponse(BaseModel):
    success: bool = Field(default=True)
    message: str = Field(default="Setting saved")
    key: str
    value: Any


# ══════════════════════════════════════════════════════════════════════════
# Analytics / Logs
# ══════════════════════════════════════════════════════════════════════════


class ApiUsageStat(BaseModel):
    endpoint: str
    method: str
    requests: int
    avg_response_time: Optional[float] = Field(default=None, description="Milliseconds")
    error_rate: float = Field(description="Percentage of responses with status >= 400")


class ApiUsageStatsResponse(BaseModel):
    stats: List[ApiUsageStat]
    hours: int


class ErrorLogItem(BaseModel):
    id: int
    level: str
    message: str
    error_details: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ErrorLogsResponse(BaseModel):
    errors: List[ErrorLogItem]
    limit: int
