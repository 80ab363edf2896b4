"""
CivicForm Middleware - Request ID Middleware
==============================================

What:  Gives every request a short correlation id, returned in X-Request-ID.
Why:   The same id appears in access log lines, error bodies and persisted
       error_logs rows (as session_id), so one failing call can be traced
       across all three.
How:   Accepts the caller's X-Request-ID when present, otherwise generates
       8 hex characters. Stored in a ContextVar for loggers and services and
       in request.state for handlers.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests share a thread but not a context
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_REQUEST_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()[:MAX_REQUEST_ID_LENGTH]
        if not rid:
            rid = uuid.uuid4().hex[:8]

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
