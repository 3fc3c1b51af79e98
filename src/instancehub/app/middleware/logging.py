"""Request logging middleware.

Provides canonical log line per request with trace ID propagation.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from instancehub.app.config import get_settings
from instancehub.app.logging import clear_trace_context, set_trace_id
from instancehub.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from instancehub.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

# Path normalization patterns (replace dynamic IDs with placeholders)
_PATH_PATTERNS = [
    (re.compile(r"^/instances/[^/]+/(start|stop|status)$"), r"/instances/:id/\1"),
    (re.compile(r"^/instances/[^/]+$"), "/instances/:id"),
    (re.compile(r"^/instance(/.*)?$"), "/instance/*"),
]

# Whitelist of known endpoints for metrics (cardinality control)
_KNOWN_ENDPOINTS = frozenset({
    "/instances",
    "/instances/:id",
    "/instances/:id/start",
    "/instances/:id/stop",
    "/instances/:id/status",
    "/runtime/status",
    "/runtime/reconcile",
    "/instance/*",
})

_SKIP_PATHS = ("/health", "/metrics")


def normalize_path(path: str) -> str:
    """Normalize path and apply whitelist for cardinality control."""
    for pattern, replacement in _PATH_PATTERNS:
        path, count = pattern.subn(replacement, path)
        if count:
            break
    return path if path in _KNOWN_ENDPOINTS else "other"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging with trace ID propagation.

    Features:
    - Sets trace_id from X-Trace-ID header or generates new one
    - Logs canonical request log line (one per request)
    - Records HTTP metrics
    - Adds X-Trace-ID header to response
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = set_trace_id(request.headers.get("x-trace-id"))
        slow_threshold_ms = get_settings().logging.slow_threshold_ms
        path = request.url.path

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "method": request.method,
                    "path": path,
                    "duration_ms": duration_ms,
                    "trace_id": trace_id,
                },
            )
            raise
        finally:
            clear_trace_context()

        duration_seconds = time.monotonic() - start
        duration_ms = duration_seconds * 1000

        if path not in _SKIP_PATHS:
            endpoint = normalize_path(path)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code),
            ).inc()
            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration_seconds)

            logger.info(
                "Request completed",
                extra={
                    "event": LogEvent.REQUEST_COMPLETE,
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "trace_id": trace_id,
                },
            )

            if duration_ms > slow_threshold_ms:
                logger.warning(
                    "Slow request detected",
                    extra={
                        "event": LogEvent.REQUEST_SLOW,
                        "method": request.method,
                        "path": path,
                        "status": response.status_code,
                        "duration_ms": duration_ms,
                        "threshold_ms": slow_threshold_ms,
                        "trace_id": trace_id,
                    },
                )

        response.headers["X-Trace-ID"] = trace_id
        return response
