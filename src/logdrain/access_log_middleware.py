from __future__ import annotations

import logging
import time
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from logdrain.metrics import HttpMetrics

logger = logging.getLogger("logdrain.access")


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Logs one line per request, and feeds request count and latency to
    ``http_metrics`` when one is given.
    Health checks go to DEBUG so they don't drown the ingest lines.
    """
    def __init__(self, app, *, quiet_paths=("/health",), http_metrics: Optional[HttpMetrics] = None):
        super().__init__(app)
        self.quiet_paths = set(quiet_paths)
        self.http_metrics = http_metrics

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        status = 500
        try:
            resp = await call_next(request)
            status = resp.status_code
            return resp
        finally:
            elapsed = time.time() - start
            dur_ms = elapsed * 1000.0
            if self.http_metrics is not None:
                # route template, so unknown paths do not mint new series
                route = request.scope.get("route")
                self.http_metrics.observe(request.method, getattr(route, "path", "unmatched"), int(status), elapsed)
            level = logging.DEBUG if request.url.path in self.quiet_paths else logging.INFO
            logger.log(
                level,
                '%s "%s %s" %d %.3fms',
                request.client.host if request.client else "-",
                request.method,
                request.url.path,
                int(status),
                dur_ms,
            )
