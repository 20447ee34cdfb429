"""
API Middleware

- Request logging with a bound request id
- Per-client rate limiting
- Security headers
"""

import asyncio
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Iterable

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)


def client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Socket peer address.

    The first address of X-Forwarded-For is used only when the peer is one
    of the trusted proxies; otherwise the header is client-controlled.
    """
    peer = request.client.host if request.client else "unknown"
    if peer in trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return peer


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing; the request id is bound for all log lines of the request"""

    def __init__(self, app, org_header: str = "X-Org-ID", trusted_proxies: Iterable[str] = ()):
        super().__init__(app)
        self.org_header = org_header
        self.trusted_proxies = frozenset(trusted_proxies)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            org_id=request.headers.get(self.org_header),
        )

        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            client=client_ip(request, self.trusted_proxies),
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Request failed", duration_ms=round((time.perf_counter() - start_time) * 1000, 2))
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limiter keyed by client address.

    State is per process; every worker enforces its own limit.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        trusted_proxies: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.trusted_proxies = frozenset(trusted_proxies)
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = asyncio.Lock()

    def _sweep(self, now: float) -> None:
        """Drop clients with no request inside the window"""
        stale = [
            client_id for client_id, timestamps in self._requests.items()
            if not timestamps or now - timestamps[-1] >= self.window_seconds
        ]
        for client_id in stale:
            del self._requests[client_id]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_id = client_ip(request, self.trusted_proxies)
        now = self._clock()

        async with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            timestamps = self._requests.setdefault(client_id, deque())
            while timestamps and now - timestamps[0] >= self.window_seconds:
                timestamps.popleft()

            if len(timestamps) >= self.max_requests:
                logger.warning("Rate limit exceeded", client=client_id, requests=len(timestamps))
                return JSONResponse(
                    {"error": "Rate limit exceeded"},
                    status_code=429,
                    headers={
                        "Retry-After": str(self.window_seconds),
                        "X-RateLimit-Limit": str(self.max_requests),
                        "X-RateLimit-Remaining": "0",
                    },
                )

            timestamps.append(now)
            remaining = self.max_requests - len(timestamps)

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers on every response; analytics are per-org and never publicly cacheable"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers.setdefault("Cache-Control", "private, no-store")
        return response
