"""
Rate Limit Middleware

In-memory sliding window limits per client IP. Match protocol actions get a
tighter budget than reads since each one writes to two or more trips.
"""

import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Tuple

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tartantrips.config import settings


EXEMPT_PATHS = {"/health", "/", "/docs", "/redoc", "/openapi.json"}
MUTATING_PATHS = {"/api/match-requests", "/api/trip-status-sync"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiting keyed by client IP and route class."""

    def __init__(self, app, window_size: int = 60):
        super().__init__(app)
        self.hits: Dict[str, Deque[float]] = defaultdict(deque)
        self.window_size = window_size

    @staticmethod
    def _client_ip(request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _get_key(self, request: Request) -> Tuple[str, int]:
        """Return (key, limit) for the request."""
        client_ip = self._client_ip(request)
        if request.method == "POST" and request.url.path in MUTATING_PATHS:
            return f"match:{client_ip}", settings.rate_limit_match_actions_per_minute
        return f"ip:{client_ip}", settings.rate_limit_per_minute

    def _is_rate_limited(self, key: str, limit: int) -> bool:
        now = time.monotonic()
        window = self.hits[key]

        while window and window[0] <= now - self.window_size:
            window.popleft()

        if len(window) >= limit:
            return True

        window.append(now)
        return False

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        key, limit = self._get_key(request)

        if self._is_rate_limited(key, limit):
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "Too many requests. Please try again in a minute."},
                headers={"Retry-After": str(self.window_size)},
            )

        return await call_next(request)
