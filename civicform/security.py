"""
CivicForm Middleware - Shared-Secret Gates
============================================

What:  FastAPI dependencies that check the `X-Auth-Token` header.
Why:   Two different callers use the service: the backend (structure push,
       queue drain, status reports, operator endpoints) and the frontend
       (submission enqueue, submission listing). Each group has its own
       secret so that leaking one does not expose the other.
How:   Constant-time comparison against WEBHOOK_SECRET or SUBMISSION_SECRET.
       A group whose secret is unset rejects every request unless
       ALLOW_UNAUTHENTICATED=true.

Usage:
    @router.post("/webform/{webform_id}/structure",
                 dependencies=[Depends(require_webhook_token)])
"""

import hmac
import logging
from typing import Optional

from fastapi import Request

from civicform.config import settings
from civicform.exceptions import AuthenticationError
from civicform.middleware.client_info import get_client_ip
from civicform.services.log_service import error_log_service

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Auth-Token"


def token_matches(provided: Optional[str], secret: str) -> bool:
    """True when `provided` equals a non-empty `secret`."""
    if not secret or provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


async def _check(request: Request, secret: str, group: str) -> None:
    if not secret and settings.allow_unauthenticated:
        return

    if token_matches(request.headers.get(AUTH_HEADER), secret):
        return

    reason = "secret not configured" if not secret else "invalid or missing token"
    logger.warning(
        "Unauthorized %s request to %s %s from %s (%s)",
        group,
        request.method,
        request.url.path,
        get_client_ip(request),
        reason,
    )
    await error_log_service.record(
        "warn", f"Unauthorized {group} request: {reason}", request=request
    )
    raise AuthenticationError()


async def require_webhook_token(request: Request) -> None:
    """Gate for backend-facing endpoints (WEBHOOK_SECRET)."""
    await _check(request, settings.webhook_secret, "webhook")


async def require_submission_token(request: Request) -> None:
    """Gate for frontend-facing submission endpoints (SUBMISSION_SECRET)."""
    await _check(request, settings.submission_secret, "submission")
