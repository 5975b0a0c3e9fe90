"""Rate-limiting middleware: sliding window, per-tenant and per-IP.

Implements an in-memory sliding window counter with:

- Per-tenant limiting for authenticated traffic (keyed by ``tenant_id``).
- Per-IP limiting for public admission endpoints (onboarding, joining,
  verification), which get their own window and threshold because they
  are the ones exposed to token and join-code guessing.
- Burst allowance on the default limit via a configurable multiplier.
- Periodic cleanup of idle keys.

.. warning:: All state is process-local.  Each replica enforces its own
   counters and a restart resets them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any

from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)


class RateLimitConfig(BaseModel):
    """Rate-limiting configuration parameters.

    Attributes:
        enabled: Master toggle.  When ``False`` the middleware is a
            pass-through.
        window_seconds: Length of the sliding window.
        default_requests_per_window: Baseline budget per tenant or IP.
        burst_multiplier: Multiplier applied to the default budget only.
        admission_requests_per_window: Hard budget per IP for
            ``admission_paths`` and ``admission_prefixes``.
        exempt_paths: Paths that bypass rate limiting entirely.
    """

    enabled: bool = True
    window_seconds: float = 60.0
    default_requests_per_window: int = 60
    burst_multiplier: float = 1.5
    admission_requests_per_window: int = 10
    admission_paths: set[str] = {
        "/api/v1/get-started",
        "/api/v1/verify",
        "/api/v1/join/by-token",
        "/api/v1/join/by-code",
    }
    admission_prefixes: tuple[str, ...] = (
        "/api/v1/invites/validate/",
        "/api/v1/tenants/by-code/",
    )
    exempt_paths: set[str] = {"/api/v1/health", "/ready", "/api/v1/webhooks/stripe"}


_CLEANUP_INTERVAL_SECONDS: float = 60.0


class SlidingWindowCounter:
    """asyncio-safe sliding window request counter.

    Each key maps to a deque of monotonic timestamps; entries older than the
    window are pruned on every access.
    """

    def __init__(self, window_seconds: float = 60.0) -> None:
        self._window: float = window_seconds
        self._buckets: dict[str, deque[float]] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Launch the periodic cleanup coroutine."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.ensure_future(self._cleanup_loop())

    async def stop(self) -> None:
        """Cancel the cleanup loop and wait for it to finish."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _prune(self, bucket: deque[float], now: float) -> None:
        cutoff = now - self._window
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()

    async def hit(self, key: str) -> int:
        """Record a request for *key* and return the count inside the window."""
        now = time.monotonic()
        async with self._lock:
            bucket = self._buckets.setdefault(key, deque())
            self._prune(bucket, now)
            bucket.append(now)
            return len(bucket)

    async def count(self, key: str) -> int:
        """Return the current count without recording a hit."""
        now = time.monotonic()
        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return 0
            self._prune(bucket, now)
            return len(bucket)

    async def time_until_reset(self, key: str) -> float:
        """Seconds until the oldest entry for *key* leaves the window."""
        now = time.monotonic()
        async with self._lock:
            bucket = self._buckets.get(key)
            if not bucket:
                return 0.0
            return max(bucket[0] + self._window - now, 0.0)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(_CLEANUP_INTERVAL_SECONDS)
            now = time.monotonic()
            async with self._lock:
                stale_keys = []
                for key, bucket in self._buckets.items():
                    self._prune(bucket, now)
                    if not bucket:
                        stale_keys.append(key)
                for key in stale_keys:
                    del self._buckets[key]
            if stale_keys:
                logger.debug("Rate-limit cleanup removed %d stale keys", len(stale_keys))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Starlette middleware enforcing sliding-window rate limits.

    Responses carry ``X-RateLimit-Limit``, ``X-RateLimit-Remaining`` and
    ``X-RateLimit-Reset``; a client over budget receives 429 with
    ``Retry-After``.
    """

    def __init__(self, app: Any, config: RateLimitConfig | None = None) -> None:
        super().__init__(app)
        self._config: RateLimitConfig = config or RateLimitConfig()
        self._counter = SlidingWindowCounter(self._config.window_seconds)
        if self._config.enabled:
            self._counter.start()
        logger.info(
            "RateLimitMiddleware initialised (enabled=%s, window=%.0fs, default=%d, admission=%d)",
            self._config.enabled,
            self._config.window_seconds,
            self._config.default_requests_per_window,
            self._config.admission_requests_per_window,
        )

    def _is_admission_path(self, path: str) -> bool:
        if path in self._config.admission_paths:
            return True
        return any(path.startswith(prefix) for prefix in self._config.admission_prefixes)

    def _client_key(self, request: Request, *, by_ip: bool) -> str:
        """Key by tenant for authenticated traffic, by IP otherwise."""
        tenant_id: str | None = getattr(request.state, "tenant_id", None)
        if tenant_id and not by_ip:
            return f"tenant:{tenant_id}"
        ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._config.enabled:
            return await call_next(request)

        path = request.url.path
        if path in self._config.exempt_paths:
            return await call_next(request)

        if self._is_admission_path(path):
            limit = self._config.admission_requests_per_window
            counter_key = f"{self._client_key(request, by_ip=True)}:admission"
        else:
            limit = int(self._config.default_requests_per_window * self._config.burst_multiplier)
            counter_key = f"{self._client_key(request, by_ip=False)}:default"

        current_count = await self._counter.hit(counter_key)

        if current_count > limit:
            retry_after = max(int(await self._counter.time_until_reset(counter_key)) + 1, 1)
            logger.warning(
                "Rate limit exceeded: key=%s path=%s count=%d limit=%d",
                counter_key,
                path,
                current_count,
                limit,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "error": "rate_limited",
                    "detail": "Rate limit exceeded. Try again later.",
                    "retry_after": retry_after,
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(retry_after),
                },
            )

        response = await call_next(request)

        reset = max(int(await self._counter.time_until_reset(counter_key)) + 1, 1)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(limit - current_count, 0))
        response.headers["X-RateLimit-Reset"] = str(reset)
        return response
