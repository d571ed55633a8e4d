"""
PracticeSync — Access Logging Middleware
==========================================

What:  One log line per request: method, path, status, duration, request id.
Why:   Sync triggers and webhooks can take seconds; the duration shows when
       Halaxy is slow before anyone has to open the sync logs.

Severity follows the status code: 5xx → ERROR, 4xx → WARNING, else INFO.
Request bodies are never logged; webhook payloads carry patient data.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from practice_sync.middleware.request_id import request_id_var

logger = logging.getLogger("practice_sync.access")

# Probed every few seconds by orchestrators
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        rid = request_id_var.get("") or getattr(request.state, "request_id", "")
        client_ip = request.client.host if request.client else "unknown"
        logger.log(
            level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
