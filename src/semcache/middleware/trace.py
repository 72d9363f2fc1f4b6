"""
Request tracing middleware.

Assigns a trace ID to every request and measures response time. The
trace ID flows through the async call chain via contextvars.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from semcache.core.context import set_request_id
from semcache.core.metrics import cache_metrics

logger = logging.getLogger(__name__)


class TraceMiddleware(BaseHTTPMiddleware):
    """Extracts or generates X-Request-ID and adds timing headers."""

    async def dispatch(self, request: Request, call_next: ...) -> Response:
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        cache_metrics.record_http_request(request.url.path, response.status_code)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

        logger.info(
            "%s %s -> %d (%.2fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

        return response
