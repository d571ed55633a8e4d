"""
PracticeSync — Manual Trigger Rate Limiter
============================================

What:  Per-IP sliding window limit on the manual sync trigger.
Why:   A full sync of every practitioner costs hundreds of Halaxy requests;
       a stuck button or a retrying script must not burn the remote quota.
How:   Keeps request timestamps per client IP in memory, drops those outside
       the window, and answers 429 with Retry-After once the limit is hit.
Who:   Registered in create_app(); only paths in LIMITED_PATHS are counted.

Webhooks are deliberately not limited: Halaxy retries rejected deliveries,
which would only delay the same work.

Single-process only. Behind several workers each keeps its own counts.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, FrozenSet, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from practice_sync.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    LIMITED_PATHS: FrozenSet[str] = frozenset({"/api/sync/trigger"})

    def __init__(self, app, settings: Optional[Settings] = None, **kwargs):
        super().__init__(app, **kwargs)
        self._settings = settings or default_settings
        self._requests: Dict[str, List[float]] = defaultdict(list)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path not in self.LIMITED_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        limit = self._settings.rate_limit_requests
        window = self._settings.rate_limit_window

        now = time.time()
        window_start = now - window
        recent = [ts for ts in self._requests[client_ip] if ts > window_start]

        if len(recent) >= limit:
            retry_after = int(recent[0] + window - now) + 1
            self._requests[client_ip] = recent
            logger.warning(
                "Sync trigger rate limit hit for %s: %d requests in %ds",
                client_ip,
                len(recent),
                window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many sync requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._requests[client_ip] = recent
        self._forget_idle_clients(window_start)
        return await call_next(request)

    def _forget_idle_clients(self, window_start: float) -> None:
        idle = [ip for ip, stamps in self._requests.items() if not stamps or stamps[-1] <= window_start]
        for ip in idle:
            del self._requests[ip]
