"""
Production middleware: fixed-window rate limiting and security headers.
"""
import time
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 15 * 60
RATE_LIMIT_MAX_REQUESTS = 100

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "X-Content-Type-Options": "nosniff",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-DNS-Prefetch-Control": "off",
    "Referrer-Policy": "no-referrer",
}


class FixedWindowCounter:
    """Per-client hit counts that reset when the client's window expires."""

    def __init__(self, window: float, limit: int, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.limit = limit
        self.clock = clock
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str) -> Tuple[bool, int]:
        """Count one request for ``key``; return (allowed, remaining)."""
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            start, count = self._hits.get(key, (now, 0))
            if now - start >= self.window:
                start, count = now, 0
            count += 1
            self._hits[key] = (start, count)
        return count <= self.limit, max(self.limit - count, 0)

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [k for k, (start, _) in self._hits.items() if now - start >= self.window]
        for k in expired:
            del self._hits[k]
        self._last_sweep = now


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        window: float = RATE_LIMIT_WINDOW_SECONDS,
        limit: int = RATE_LIMIT_MAX_REQUESTS,
        counter: Optional[FixedWindowCounter] = None,
    ):
        super().__init__(app)
        self.counter = counter or FixedWindowCounter(window, limit)

    async def dispatch(self, request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        allowed, remaining = self.counter.hit(client)
        headers = {
            "X-RateLimit-Limit": str(self.counter.limit),
            "X-RateLimit-Remaining": str(remaining),
        }
        if not allowed:
            logger.warning("Rate limit exceeded for %s", client)
            return JSONResponse(
                status_code=429,
                content={"message": "Too many requests, please try again later."},
                headers=headers,
            )
        response = await call_next(request)
        response.headers.update(headers)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response
