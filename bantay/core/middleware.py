"""
Per-request logging for the status API.

Each request runs inside a log context carrying its request id (taken
from ``X-Request-ID`` when the caller sends one). The response echoes the
id and reports the handling time in ``X-Process-Time``.

Clients poll ``GET /api/v1/status`` every few minutes, so successful
polls and health probes are logged at DEBUG; everything else at INFO,
and 4xx/5xx at WARNING.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from bantay.core.logging_config import log_context

logger = logging.getLogger(__name__)

QUIET_PATHS = ("/health", "/api/v1/status", "/docs", "/redoc", "/openapi.json", "/favicon.ico")


def _log_level(path: str, status_code: int) -> int:
    if status_code >= 400:
        return logging.WARNING
    if path.startswith(QUIET_PATHS):
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Request id propagation, timing header, one log line per request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        started = time.perf_counter()

        with log_context(request_id=request_id, method=request.method, endpoint=path):
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "%s %s failed", request.method, path,
                    extra={"endpoint": path, "status_code": 500},
                )
                raise

            elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
            logger.log(
                _log_level(path, response.status_code),
                "%s %s %d in %.1fms", request.method, path, response.status_code, elapsed_ms,
                extra={
                    "endpoint": path,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
        return response
