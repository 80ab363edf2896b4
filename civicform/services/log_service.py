"""
CivicForm Middleware - Persisted Error and Usage Logs
=======================================================

What:  Writes and reads the `error_logs` and `api_usage` tables.
Why:   The service usually runs where its stdout is hard to reach; operators
       inspect recent errors and per-endpoint traffic over the API instead.
How:   Writers open their own short session so a record survives even when
       the request's own transaction rolls back. They are best effort: a
       failed insert is logged to stdout and never changes the response.
"""

import json
import logging
import traceback
from datetime import timedelta
from typing import Optional

from sqlalchemy import case, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from civicform.database import async_session_factory
from civicform.exceptions import DatabaseError, ValidationError
from civicform.middleware.client_info import get_client_ip, get_endpoint, get_user_agent
from civicform.middleware.request_id import request_id_var
from civicform.models.logs import ApiUsage, ErrorLog
from civicform.schemas.common import (
    ApiUsageStat,
    ApiUsageStatsResponse,
    ErrorLogItem,
    ErrorLogsResponse,
)
from civicform.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


def describe_exception(error: BaseException) -> str:
    """JSON text with the exception's name, message and formatted stack."""
    return json.dumps(
        {
            "name": type(error).__name__,
            "message": str(error),
            "stack": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
        }
    )


class ErrorLogService:
    """Persisted error log (error_logs table)."""

    async def record(
        self,
        level: str,
        message: str,
        error: Optional[BaseException] = None,
        request: Optional[HTTPConnection] = None,
    ) -> None:
        """
        Insert one error_logs row. Never raises.

        `error` is stored as JSON text (name, message, stack). Request context
        (endpoint, method, user agent, client IP, request id) is filled in
        when a request is given.
        """
        entry = ErrorLog(
            level=level,
            message=message,
            error_details=describe_exception(error) if error is not None else None,
            endpoint=get_endpoint(request) if request is not None else None,
            method=request.scope.get("method") if request is not None else None,
            user_agent=get_user_agent(request) if request is not None else None,
            ip_address=get_client_ip(request) if request is not None else None,
            session_id=request_id_var.get("") or None,
        )
        try:
            async with async_session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception as e:
            logger.error("Failed to log error to database: %s", str(e))

    async def recent(self, db: AsyncSession, limit: int = 50) -> ErrorLogsResponse:
        """Newest error_logs rows first."""
        if limit < 1 or limit > 1000:
            raise ValidationError(message="limit must be between 1 and 1000", field="limit")
        try:
            result = await db.execute(
                select(ErrorLog).order_by(ErrorLog.created_at.desc(), ErrorLog.id.desc()).limit(limit)
            )
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error reading error logs: %s", str(e), exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        errors = []
        for row in rows:
            item = ErrorLogItem.model_validate(row)
            item.created_at = as_utc(item.created_at)
            errors.append(item)
        return ErrorLogsResponse(errors=errors, limit=limit)


class UsageService:
    """Per-request usage tracking (api_usage table)."""

    async def record(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: Optional[int],
        user_agent: Optional[str],
        ip_address: Optional[str],
    ) -> None:
        """Insert one api_usage row. Never raises."""
        try:
            async with async_session_factory() as session:
                session.add(
                    ApiUsage(
                        endpoint=endpoint,
                        method=method,
                        status_code=status_code,
                        response_time_ms=response_time_ms,
                        user_agent=user_agent,
                        ip_address=ip_address,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error("Failed to log API usage: %s", str(e))

    async def stats(self, db: AsyncSession, hours: int = 24) -> ApiUsageStatsResponse:
        """
        Traffic per endpoint and method over the last `hours` hours.

        error_rate is the percentage of responses with status >= 400.
        Ordered by request count, busiest first.
        """
        if hours < 1 or hours > 24 * 365:
            raise ValidationError(message="hours must be between 1 and 8760", field="hours")
        cutoff = utcnow() - timedelta(hours=hours)

        requests = func.count(ApiUsage.id).label("requests")
        query = (
            select(
                ApiUsage.endpoint,
                ApiUsage.method,
                requests,
                func.avg(ApiUsage.response_time_ms).label("avg_response_time"),
                (
                    func.avg(case((ApiUsage.status_code >= 400, 1.0), else_=0.0)) * 100
                ).label("error_rate"),
            )
            .where(ApiUsage.created_at >= cutoff)
            .group_by(ApiUsage.endpoint, ApiUsage.method)
            .order_by(desc(requests))
        )
        try:
            result = await db.execute(query)
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Database error computing API usage stats: %s", str(e), exc_info=True)
            raise DatabaseError(context={"error_type": type(e).__name__})

        return ApiUsageStatsResponse(
            stats=[
                ApiUsageStat(
                    endpoint=row.endpoint,
                    method=row.method,
                    requests=row.requests,
                    avg_response_time=(
                        float(row.avg_response_time) if row.avg_response_time is not None else None
                    ),
                    error_rate=float(row.error_rate or 0.0),
                )
                for row in rows
            ],
            hours=hours,
        )


error_log_service = ErrorLogService()
usage_service = UsageService()
