"""
WalkLog Backend — Rate Limiting Middleware
============================================

What:  Per-IP sliding window limiter for the write endpoints.
How:   Keeps the request timestamps of each client IP in memory. When a
       client already has `max_requests` inside the last `window_seconds`,
       the request is answered with 429 and a Retry-After header.

Exempt:
    - GET/HEAD on the image proxy prefix: a page of activities loads many
      images at once, and those responses are immutable and cached.
    - /health and the API docs.

Single-process only: each worker keeps its own counters.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from walklog.config import settings
from walklog.exceptions import RateLimitExceededError
from walklog.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

EXCLUDED_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})
READ_METHODS = frozenset({"GET", "HEAD"})

# Full sweep of idle IPs every N recorded requests.
CLEANUP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Args:
        max_requests: Allowed requests per window (default: settings.rate_limit_requests)
        window_seconds: Window length (default: settings.rate_limit_window)
        read_prefix: Path prefix whose reads are never limited
                     (default: settings.image_proxy_prefix)
    """

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        read_prefix: Optional[str] = None,
    ):
        super().__init__(app)
        self.max_requests = max_requests if max_requests is not None else settings.rate_limit_requests
        self.window_seconds = window_seconds if window_seconds is not None else settings.rate_limit_window
        self.read_prefix = (read_prefix if read_prefix is not None else settings.image_proxy_prefix).rstrip("/")
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._recorded = 0

    def is_exempt(self, request: Request) -> bool:
        path = request.url.path
        if path in EXCLUDED_PATHS:
            return True
        return request.method in READ_METHODS and path.startswith(self.read_prefix + "/")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self.is_exempt(request):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        window_start = now - self.window_seconds

        timestamps = self._requests[client_ip]
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(timestamps),
                self.window_seconds,
            )
            # Raised exceptions do not reach the app's handlers from here,
            # so the error body is built directly.
            error = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "kind": error.kind,
                    "message": error.message,
                    "details": {"retry_after": retry_after},
                    "request_id": request_id_var.get() or None,
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)
        self._recorded += 1
        if self._recorded % CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive:
            del self._requests[ip]
        if inactive:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive))
