"""In-memory sliding-window rate limiter.

Requests are bucketed per caller (``X-User-Id`` header, falling back to the
client IP).  Full sync requests are heavier than everything else and get
their own, tighter budget.  State lives in process memory, so limits are
per instance.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from medreminder.config import Settings, get_settings

FULL_SYNC_PATH_SUFFIX = "/sync/full"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-caller sliding window rate limiter."""

    def __init__(
        self,
        app: Any,
        settings: Settings | None = None,
        full_sync_per_minute: int = 20,
    ) -> None:
        super().__init__(app)
        s = settings or get_settings()
        self._limits = {
            "default": s.rate_limit_per_minute,
            "full_sync": full_sync_per_minute,
        }
        self._window_seconds = 60
        # (bucket, caller) -> request timestamps
        self._requests: dict[tuple[str, str], list[float]] = defaultdict(list)

    def _caller(self, request: Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if user_id:
            return f"user:{user_id}"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    def _bucket(self, request: Request) -> str:
        if request.method == "POST" and request.url.path.rstrip("/").endswith(FULL_SYNC_PATH_SUFFIX):
            return "full_sync"
        return "default"

    def _cleanup(self, key: tuple[str, str], now: float) -> None:
        cutoff = now - self._window_seconds
        self._requests[key] = [t for t in self._requests[key] if t > cutoff]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        bucket = self._bucket(request)
        key = (bucket, self._caller(request))
        limit = self._limits[bucket]
        now = time.monotonic()
        self._cleanup(key, now)

        if len(self._requests[key]) >= limit:
            retry_after = int(self._window_seconds - (now - self._requests[key][0]))
            return Response(
                content='{"detail":"Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(max(retry_after, 1))},
            )

        self._requests[key].append(now)

        response = await call_next(request)

        remaining = limit - len(self._requests[key])
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(remaining, 0))

        return response
