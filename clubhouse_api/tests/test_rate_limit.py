"""Tests for clubhouse_api/middleware/rate_limit.py

Covers:
- Requests within limit pass through with rate-limit headers.
- Requests exceeding the burst limit receive 429 with Retry-After.
- Admission endpoints use their own, lower per-IP budget.
- Exempt paths bypass rate limiting entirely.
- Tenant-based keying isolates quotas between tenants.
- The sliding window resets after sufficient time passes.
- Disabled middleware is a transparent pass-through.
"""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from clubhouse_api.middleware.rate_limit import (
    RateLimitConfig,
    RateLimitMiddleware,
    SlidingWindowCounter,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_app(config: RateLimitConfig, tenant_header: bool = False) -> Starlette:
    """Build a minimal Starlette app with the rate-limit middleware.

    With *tenant_header*, an inner hook copies ``X-Tenant`` into
    ``request.state.tenant_id`` to simulate the auth middleware.
    """

    async def _ok(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app = Starlette(
        routes=[
            Route("/api/v1/invites", _ok),
            Route("/api/v1/health", _ok),
            Route("/api/v1/join/by-code", _ok, methods=["POST"]),
            Route("/api/v1/tenants/by-code/{code}", _ok),
        ]
    )
    app.add_middleware(RateLimitMiddleware, config=config)

    if tenant_header:

        class _TenantSetter(BaseHTTPMiddleware):
            async def dispatch(self, request, call_next):
                tenant = request.headers.get("X-Tenant")
                if tenant:
                    request.state.tenant_id = tenant
                return await call_next(request)

        # Added last so it runs before the rate limiter, like the auth middleware.
        app.add_middleware(_TenantSetter)

    return app


def _config(**overrides) -> RateLimitConfig:
    values = {
        "default_requests_per_window": 3,
        "burst_multiplier": 1.0,
        "admission_requests_per_window": 2,
    }
    values.update(overrides)
    return RateLimitConfig(**values)


def _client(app: Starlette) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class TestRateLimitMiddleware:
    @pytest.mark.asyncio
    async def test_within_limit_has_headers(self) -> None:
        async with _client(_make_app(_config())) as client:
            resp = await client.get("/api/v1/invites")

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"
        assert int(resp.headers["X-RateLimit-Reset"]) >= 1

    @pytest.mark.asyncio
    async def test_exceeding_limit_returns_429(self) -> None:
        async with _client(_make_app(_config())) as client:
            statuses = [(await client.get("/api/v1/invites")).status_code for _ in range(4)]
            blocked = await client.get("/api/v1/invites")

        assert statuses == [200, 200, 200, 429]
        assert blocked.status_code == 429
        assert blocked.json()["error"] == "rate_limited"
        assert int(blocked.headers["Retry-After"]) >= 1
        assert blocked.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_burst_multiplier_applies_to_default_budget(self) -> None:
        async with _client(_make_app(_config(burst_multiplier=2.0))) as client:
            resp = await client.get("/api/v1/invites")
        assert resp.headers["X-RateLimit-Limit"] == "6"

    @pytest.mark.asyncio
    async def test_admission_paths_use_lower_budget(self) -> None:
        async with _client(_make_app(_config(burst_multiplier=5.0))) as client:
            statuses = [(await client.post("/api/v1/join/by-code")).status_code for _ in range(3)]
            lookup = await client.get("/api/v1/tenants/by-code/ABCD2345")

        assert statuses == [200, 200, 429]
        assert lookup.status_code == 429

    @pytest.mark.asyncio
    async def test_admission_budget_is_per_ip_even_with_tenant(self) -> None:
        async with _client(_make_app(_config(), tenant_header=True)) as client:
            first = await client.post("/api/v1/join/by-code", headers={"X-Tenant": "t1"})
            second = await client.post("/api/v1/join/by-code", headers={"X-Tenant": "t2"})
            third = await client.post("/api/v1/join/by-code", headers={"X-Tenant": "t3"})

        assert (first.status_code, second.status_code, third.status_code) == (200, 200, 429)

    @pytest.mark.asyncio
    async def test_exempt_paths_are_never_limited(self) -> None:
        async with _client(_make_app(_config(default_requests_per_window=1))) as client:
            statuses = [(await client.get("/api/v1/health")).status_code for _ in range(5)]

        assert statuses == [200] * 5

    @pytest.mark.asyncio
    async def test_tenants_have_separate_budgets(self) -> None:
        async with _client(_make_app(_config(default_requests_per_window=1), tenant_header=True)) as client:
            a1 = await client.get("/api/v1/invites", headers={"X-Tenant": "a"})
            a2 = await client.get("/api/v1/invites", headers={"X-Tenant": "a"})
            b1 = await client.get("/api/v1/invites", headers={"X-Tenant": "b"})

        assert (a1.status_code, a2.status_code, b1.status_code) == (200, 429, 200)

    @pytest.mark.asyncio
    async def test_disabled_is_pass_through(self) -> None:
        async with _client(_make_app(_config(enabled=False, default_requests_per_window=1))) as client:
            responses = [await client.get("/api/v1/invites") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert "X-RateLimit-Limit" not in responses[0].headers


# ---------------------------------------------------------------------------
# Counter
# ---------------------------------------------------------------------------


class TestSlidingWindowCounter:
    @pytest.mark.asyncio
    async def test_counts_hits(self) -> None:
        counter = SlidingWindowCounter(window_seconds=60)
        assert await counter.hit("k") == 1
        assert await counter.hit("k") == 2
        assert await counter.count("k") == 2
        assert await counter.count("other") == 0

    @pytest.mark.asyncio
    async def test_window_expires(self) -> None:
        counter = SlidingWindowCounter(window_seconds=10)
        start = time.monotonic()

        with patch("clubhouse_api.middleware.rate_limit.time.monotonic", return_value=start):
            await counter.hit("k")
            await counter.hit("k")
        with patch("clubhouse_api.middleware.rate_limit.time.monotonic", return_value=start + 11):
            assert await counter.count("k") == 0
            assert await counter.time_until_reset("k") == 0.0

    @pytest.mark.asyncio
    async def test_time_until_reset(self) -> None:
        counter = SlidingWindowCounter(window_seconds=30)
        start = time.monotonic()

        with patch("clubhouse_api.middleware.rate_limit.time.monotonic", return_value=start):
            await counter.hit("k")
        with patch("clubhouse_api.middleware.rate_limit.time.monotonic", return_value=start + 10):
            assert await counter.time_until_reset("k") == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        counter = SlidingWindowCounter()
        counter.start()
        await counter.stop()
        await counter.stop()
