"""
Request middleware - correlation ids and one access log line per request.

Every log record emitted while a request is in flight carries its
request_id and (if sent) the caller's X-Actor-Id, so a trigger's
resolution and send lines can be grouped afterwards.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sosalert.app.core.logging_config import reset_request_context, set_request_context

logger = logging.getLogger(__name__)

# Probe and docs traffic is not worth a log line
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _is_quiet(path: str) -> bool:
    return path.startswith(_QUIET_PREFIXES)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Adds X-Request-ID / X-Process-Time and logs method, path, status, timing."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        token = set_request_context(
            request_id=request_id,
            actor_id=request.headers.get("X-Actor-Id"),
            client_ip=request.client.host if request.client else None,
            method=request.method,
        )
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            elapsed = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{elapsed:.1f}ms"
            return response
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            if status_code >= 500 or not _is_quiet(path):
                logger.log(
                    logging.WARNING if status_code >= 400 else logging.INFO,
                    "%s %s → %d (%.1fms)", request.method, path, status_code, elapsed,
                    extra={"duration_ms": round(elapsed, 1), "status_code": status_code, "endpoint": path},
                )
            reset_request_context(token)
