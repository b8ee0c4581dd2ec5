"""
HTTP metrics middleware for Boresha Reviews.

Tracks request count and duration per method/path/status. Metric objects
are no-ops when METRICS_ENABLED=false, so only the in-process summary
counters move in that case.
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics.

    Tracks total request count and request duration by method, path, and
    status code.
    """

    # Probe paths are excluded from per-path labels
    _SKIP_PATHS = frozenset({"/health", "/readiness", "/metrics", "/favicon.ico"})

    # Path prefixes followed by an id (e.g. /api/sentiment/drains/<uuid> -> /api/sentiment/drains/{id})
    _NORMALIZE_PREFIXES = (
        "/api/sentiment/drains/",
    )

    def _normalize_path(self, path: str) -> str:
        """Normalize paths with IDs to prevent high-cardinality labels."""
        for prefix in self._NORMALIZE_PREFIXES:
            if path.startswith(prefix):
                rest = path[len(prefix):]
                if rest and "/" not in rest:
                    return prefix + "{id}"
                elif rest and "/" in rest:
                    parts = rest.split("/", 1)
                    return prefix + "{id}/" + parts[1]
        return path

    async def dispatch(self, request: Request, call_next):
        from metrics import track_request

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        path = request.url.path
        if path not in self._SKIP_PATHS:
            track_request(request.method, self._normalize_path(path), response.status_code, duration)

        return response
