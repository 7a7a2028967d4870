"""Prometheus metrics middleware.

Counts every HTTP request by method, route and status, observes its
duration, and tracks the in-flight gauge.

The ``endpoint`` label is the matched route template, not the raw path:
``/v1/progress/{user_id}/courses/{course_id}`` is one series no matter
how many learners call it.  Requests no route matched share the
``unmatched`` label.

Event ingestion latency as a whole is visible here; the engine's own
APPLY_DURATION histogram splits out the time spent inside one apply
cycle.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from progress_engine.core.metrics import (
    ACTIVE_REQUESTS,
    REQUEST_COUNT,
    REQUEST_DURATION,
)

UNMATCHED = "unmatched"
SKIPPED_PATHS = frozenset({"/metrics"})


def route_template(request: Request) -> str:
    # the router stores the matched route in the scope during dispatch
    route = request.scope.get("route")
    if isinstance(route, Route):
        return route.path
    return UNMATCHED


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in SKIPPED_PATHS:
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            elapsed = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            endpoint = route_template(request)
            REQUEST_COUNT.labels(
                method=request.method, endpoint=endpoint, status_code=status_code
            ).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(elapsed)

        return response
