"""
CivicForm Middleware - Rate Limiter Tests
===========================================

What we test:
    ✅ admits up to the ceiling, rejects the next request with retry_after
    ✅ window slides: once the oldest hit ages out, requests are admitted again
    ✅ keys are independent
    ✅ idle keys are swept
    ✅ middleware: 429 body + Retry-After, exempt /health, proxy headers
    ✅ rejections are persisted to error_logs
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from civicform.config import settings
from civicform.middleware.rate_limit import RateLimitMiddleware, SlidingWindowRateLimiter
from civicform.services.log_service import error_log_service


class FakeClock:

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestSlidingWindowRateLimiter:

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=self.clock)

    def test_admits_up_to_ceiling(self):
        results = [self.limiter.hit("10.0.0.1")[0] for _ in range(3)]

        assert results == [True, True, True]
        assert self.limiter.remaining("10.0.0.1") == 0

    def test_rejects_over_ceiling_with_retry_after(self):
        for _ in range(3):
            self.limiter.hit("10.0.0.1")
        self.clock.advance(20)

        allowed, retry_after = self.limiter.hit("10.0.0.1")

        assert allowed is False
        assert retry_after == 41

    def test_window_slides(self):
        self.limiter.hit("10.0.0.1")
        self.clock.advance(30)
        self.limiter.hit("10.0.0.1")
        self.limiter.hit("10.0.0.1")
        assert self.limiter.hit("10.0.0.1")[0] is False

        # First hit leaves the window; exactly one slot frees up
        self.clock.advance(31)

        assert self.limiter.hit("10.0.0.1")[0] is True
        assert self.limiter.hit("10.0.0.1")[0] is False

    def test_fresh_window_admits_again(self):
        for _ in range(3):
            self.limiter.hit("10.0.0.1")
        assert self.limiter.hit("10.0.0.1")[0] is False

        self.clock.advance(61)

        assert self.limiter.hit("10.0.0.1") == (True, 0)

    def test_rejected_requests_are_not_counted(self):
        for _ in range(3):
            self.limiter.hit("10.0.0.1")
        for _ in range(10):
            self.limiter.hit("10.0.0.1")

        self.clock.advance(61)

        assert self.limiter.remaining("10.0.0.1") == 3

    def test_keys_are_independent(self):
        for _ in range(3):
            self.limiter.hit("10.0.0.1")

        assert self.limiter.hit("10.0.0.2")[0] is True

    def test_cleanup_drops_idle_keys(self):
        self.limiter.hit("10.0.0.1")
        self.clock.advance(30)
        self.limiter.hit("10.0.0.2")
        self.clock.advance(40)

        dropped = self.limiter.cleanup()

        assert dropped == 1
        assert self.limiter.remaining("10.0.0.2") == 2

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests=0, window_seconds=60)
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests=1, window_seconds=0)


def _make_app(limiter: SlidingWindowRateLimiter) -> FastAPI:
    app = FastAPI()

    @app.get("/api/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    return app


class TestRateLimitMiddleware:

    @pytest.mark.asyncio
    async def test_returns_429_with_retry_after(self, database):
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=900, clock=FakeClock())
        transport = ASGITransport(app=_make_app(limiter))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/api/ping")).status_code == 200
            assert (await client.get("/api/ping")).status_code == 200
            response = await client.get("/api/ping")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "901"
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["details"]["retry_after"] == 901

    @pytest.mark.asyncio
    async def test_rejection_is_persisted(self, db_session):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=900, clock=FakeClock())
        transport = ASGITransport(app=_make_app(limiter))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            await client.get("/api/ping")
            await client.get("/api/ping")

        logs = await error_log_service.recent(db_session)

        assert len(logs.errors) == 1
        entry = logs.errors[0]
        assert entry.level == "warn"
        assert "Rate limit exceeded" in entry.message
        assert entry.endpoint == "/api/ping"

    @pytest.mark.asyncio
    async def test_health_is_exempt(self):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=900, clock=FakeClock())
        transport = ASGITransport(app=_make_app(limiter))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            statuses = [(await client.get("/health")).status_code for _ in range(5)]

        assert statuses == [200] * 5

    @pytest.mark.asyncio
    async def test_proxy_headers_ignored_by_default(self, database, monkeypatch):
        monkeypatch.setattr(settings, "trust_proxy_headers", False)
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=900, clock=FakeClock())
        transport = ASGITransport(app=_make_app(limiter))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            first = await client.get("/api/ping", headers={"X-Forwarded-For": "198.51.100.1"})
            second = await client.get("/api/ping", headers={"X-Forwarded-For": "198.51.100.2"})

        assert first.status_code == 200
        assert second.status_code == 429

    @pytest.mark.asyncio
    async def test_proxy_headers_honoured_when_trusted(self, database, monkeypatch):
        monkeypatch.setattr(settings, "trust_proxy_headers", True)
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=900, clock=FakeClock())
        transport = ASGITransport(app=_make_app(limiter))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            first = await client.get("/api/ping", headers={"CF-Connecting-IP": "198.51.100.1"})
            second = await client.get("/api/ping", headers={"X-Forwarded-For": "198.51.100.2, 10.0.0.1"})
            third = await client.get("/api/ping", headers={"CF-Connecting-IP": "198.51.100.1"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert third.status_code == 429
