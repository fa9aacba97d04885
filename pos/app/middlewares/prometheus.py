"""HTTP request counters and latency, labelled by route template."""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..routes_metrics import (
    http_errors_total,
    http_request_duration_seconds,
    http_requests_total,
)

UNMATCHED = "unmatched"


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        # /api/orders/{order_id}, never the raw id
        path = getattr(route, "path", UNMATCHED)
        http_request_duration_seconds.labels(path=path, method=request.method).observe(
            time.perf_counter() - start
        )
        status = str(response.status_code)
        http_requests_total.labels(path=path, method=request.method, status=status).inc()
        if response.status_code >= 400:
            http_errors_total.labels(status=status).inc()
        return response
