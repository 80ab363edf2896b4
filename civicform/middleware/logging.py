"""
CivicForm Middleware - Request Logging Middleware
===================================================

What:  One access log line per request, plus an optional api_usage row.
Why:   Operators need request volume, latency and error rates per endpoint,
       both in stdout and through GET /api/analytics/api-usage.
How:   Times the downstream call, logs at a level chosen by status class and,
       when API_USAGE_TRACKING is on, persists the same facts to api_usage.

Log line:
    POST /api/webform/contact/submission 200 12.3ms [a1b2c3d4] from 203.0.113.7

What is NOT logged: request bodies (citizen submissions contain personal
data) and the X-Auth-Token header.
"""

import logging
import time

from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from civicform.config import settings
from civicform.middleware.client_info import get_client_ip, get_endpoint, get_user_agent
from civicform.middleware.request_id import request_id_var
from civicform.services.log_service import usage_service

logger = logging.getLogger("civicform.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, status, duration, request id and client IP.

    /health is skipped: load balancers poll it every few seconds.
    """

    SKIPPED_PATHS = {"/health"}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.SKIPPED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        method = request.method
        client_ip = get_client_ip(request)
        rid = request_id_var.get("")
        status = response.status_code

        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        if settings.api_usage_tracking and response.background is None:
            # Written after the body is sent; never delays the response
            response.background = BackgroundTask(
                usage_service.record,
                endpoint=get_endpoint(request),
                method=method,
                status_code=status,
                response_time_ms=int(round(duration_ms)),
                user_agent=get_user_agent(request),
                ip_address=client_ip,
            )

        return response
