"""
Tests for the security middleware stack.
"""

import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from httpx import AsyncClient, ASGITransport

from hrms.middleware.security import RateLimitingMiddleware, setup_security_middleware


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def build_app(clock, **limits) -> FastAPI:
    app = FastAPI()

    @app.post("/api/v1/auth/login")
    async def login(ok: bool = False):
        if ok:
            return {"ok": True}
        return JSONResponse(status_code=401, content={"ok": False})

    @app.get("/api/v1/items")
    async def items():
        return {"items": []}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    app.add_middleware(RateLimitingMiddleware, clock=clock, **limits)
    return app


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limited_client(clock):
    app = build_app(
        clock,
        enabled=True,
        max_requests=3,
        window_seconds=60,
        auth_max_attempts=2,
        auth_window_seconds=300,
    )
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_api_requests_are_counted(self, limited_client):
        async with limited_client as client:
            for expected_remaining in ("2", "1", "0"):
                response = await client.get("/api/v1/items")
                assert response.status_code == 200
                assert response.headers["X-RateLimit-Limit"] == "3"
                assert response.headers["X-RateLimit-Remaining"] == expected_remaining

            blocked = await client.get("/api/v1/items")

        assert blocked.status_code == 429
        body = blocked.json()
        assert body["success"] is False
        assert body["error"]["code"] == "TOO_MANY_REQUESTS"
        assert body["error"]["details"]["retry_after_seconds"] == 60
        assert blocked.headers["Retry-After"] == "60"

    @pytest.mark.asyncio
    async def test_window_slides(self, limited_client, clock):
        async with limited_client as client:
            for _ in range(3):
                await client.get("/api/v1/items")
            clock.now = 45.0
            blocked = await client.get("/api/v1/items")
            clock.now = 61.0
            allowed = await client.get("/api/v1/items")

        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "15"
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_only_failed_logins_count(self, limited_client):
        async with limited_client as client:
            for _ in range(5):
                assert (await client.post("/api/v1/auth/login", params={"ok": True})).status_code == 200

            assert (await client.post("/api/v1/auth/login")).status_code == 401
            assert (await client.post("/api/v1/auth/login")).status_code == 401
            blocked = await client.post("/api/v1/auth/login", params={"ok": True})

        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "300"

    @pytest.mark.asyncio
    async def test_groups_are_independent(self, limited_client):
        async with limited_client as client:
            await client.post("/api/v1/auth/login")
            await client.post("/api/v1/auth/login")
            items = await client.get("/api/v1/items")

        assert items.status_code == 200

    @pytest.mark.asyncio
    async def test_paths_outside_api_are_not_limited(self, limited_client):
        async with limited_client as client:
            responses = [await client.get("/health") for _ in range(10)]

        assert all(response.status_code == 200 for response in responses)
        assert "X-RateLimit-Limit" not in responses[-1].headers

    @pytest.mark.asyncio
    async def test_disabled(self, clock):
        app = build_app(clock, enabled=False, max_requests=1)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            responses = [await client.get("/api/v1/items") for _ in range(3)]

        assert all(response.status_code == 200 for response in responses)


class TestRateLimitStore:

    def test_idle_clients_are_forgotten(self, clock):
        limiter = RateLimitingMiddleware(FastAPI(), window_seconds=60, auth_window_seconds=300, clock=clock)
        limiter._requests[("10.0.0.1", "api")].append(0.0)
        limiter._requests[("10.0.0.2", "auth")].append(0.0)
        limiter._requests[("10.0.0.3", "auth")]
        clock.now = 120.0
        limiter._requests[("10.0.0.4", "api")].append(100.0)

        limiter._check_rate_limit(("10.0.0.5", "api"), 100, 60)

        assert set(limiter._requests) == {
            ("10.0.0.2", "auth"),
            ("10.0.0.4", "api"),
            ("10.0.0.5", "api"),
        }

    def test_store_is_swept_at_most_once_per_interval(self, clock):
        limiter = RateLimitingMiddleware(FastAPI(), window_seconds=10, clock=clock)
        limiter._requests[("10.0.0.1", "api")].append(0.0)
        clock.now = 30.0

        limiter._check_rate_limit(("10.0.0.2", "api"), 100, 10)

        assert ("10.0.0.1", "api") in limiter._requests


class TestSecurityHeaders:

    @pytest.mark.asyncio
    async def test_headers_added(self):
        app = FastAPI()

        @app.get("/ping")
        async def ping():
            return {"pong": True}

        setup_security_middleware(app, development_mode=False, rate_limiting_enabled=False)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/ping")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" in response.headers

    @pytest.mark.asyncio
    async def test_no_hsts_in_development(self):
        app = FastAPI()

        @app.get("/ping")
        async def ping():
            return {"pong": True}

        setup_security_middleware(app, development_mode=True, rate_limiting_enabled=False)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/ping")

        assert "Strict-Transport-Security" not in response.headers
