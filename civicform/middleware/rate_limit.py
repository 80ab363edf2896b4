"""
CivicForm Middleware - Rate Limiting Middleware
=================================================

What:  Per-IP sliding window rate limiter in front of every API route.
Why:   The service is reachable from the public internet; a single caller
       must not be able to flood the queue or the store.
How:   Keeps the timestamps of admitted requests per caller in memory and
       rejects with 429 once the window holds `max_requests` of them.

Algorithm: Sliding Window Log
    1. Each key (client IP) has a list of admission timestamps, oldest first
    2. On each request, drop timestamps older than the window
    3. If the remaining count >= limit, reject; Retry-After is the time until
       the oldest timestamp leaves the window
    4. Otherwise record the current time and admit

    Rejected requests are not recorded, so a caller that keeps hammering is
    admitted again as soon as its oldest admitted request ages out.

Scope:
    State lives in this process only. Several workers or instances each
    enforce their own ceiling; the effective limit is the per-process limit
    multiplied by the number of processes.
"""

import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from civicform.config import settings
from civicform.exceptions import RateLimitExceededError
from civicform.middleware.client_info import get_client_ip
from civicform.middleware.request_id import request_id_var
from civicform.services.log_service import error_log_service

logger = logging.getLogger(__name__)

# Full sweep of idle keys every N admissions
CLEANUP_INTERVAL = 1000


class SlidingWindowRateLimiter:
    """
    Sliding window log keyed by an arbitrary string.

    `clock` returns seconds as a float; tests pass a fake one.
    Not thread-safe. Safe under a single asyncio event loop because hit()
    never awaits.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._admitted = 0

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Try to admit one request for `key`.

        Returns (allowed, retry_after_seconds). retry_after is 0 when allowed.
        """
        now = self._clock()
        window_start = now - self.window_seconds

        hits = [ts for ts in self._hits.get(key, ()) if ts > window_start]

        if len(hits) >= self.max_requests:
            self._hits[key] = hits
            retry_after = max(1, int(hits[0] + self.window_seconds - now) + 1)
            return False, retry_after

        hits.append(now)
        self._hits[key] = hits

        self._admitted += 1
        if self._admitted % CLEANUP_INTERVAL == 0:
            self.cleanup(window_start)

        return True, 0

    def remaining(self, key: str) -> int:
        window_start = self._clock() - self.window_seconds
        active = sum(1 for ts in self._hits.get(key, ()) if ts > window_start)
        return max(0, self.max_requests - active)

    def cleanup(self, window_start: Optional[float] = None) -> int:
        """Forget keys with no admission inside the window. Returns how many were dropped."""
        if window_start is None:
            window_start = self._clock() - self.window_seconds
        inactive = [
            key for key, timestamps in self._hits.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in inactive:
            del self._hits[key]

        if inactive:
            logger.debug("Cleaned up %d inactive rate limit keys", len(inactive))
        return len(inactive)

    def reset(self) -> None:
        self._hits.clear()
        self._admitted = 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies a SlidingWindowRateLimiter to every request, keyed by client IP.

    Configuration (keyword arguments, falling back to settings):
        max_requests:   RATE_LIMIT_REQUESTS (default 100)
        window_seconds: RATE_LIMIT_WINDOW   (default 900 = 15 minutes)
        limiter:        a prebuilt limiter, mainly for tests

    Excluded paths:
        /health and the API documentation are always reachable.

    Response on rate limit:
        HTTP 429, Retry-After header, body
        {"error": "rate_limit_exceeded", "message": ..., "details": {"retry_after": N}}
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
    ):
        super().__init__(app)
        self.limiter = limiter or SlidingWindowRateLimiter(
            max_requests=max_requests or settings.rate_limit_requests,
            window_seconds=window_seconds or settings.rate_limit_window,
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = get_client_ip(request)
        allowed, retry_after = self.limiter.hit(client_ip)

        if not allowed:
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ss window",
                client_ip,
                self.limiter.max_requests,
                self.limiter.window_seconds,
            )
            error = RateLimitExceededError(retry_after=retry_after)
            await error_log_service.record(
                "warn",
                f"Rate limit exceeded for IP {client_ip} (retry after {retry_after}s)",
                request=request,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": error.message,
                    "details": error.context,
                    "request_id": request_id_var.get("") or None,
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
