"""Request context middleware: one ID per request, carried into every log line.

Two browser tabs posting events for the same learner interleave their
log output.  The request ID lives in a ContextVar (per asyncio task, not
per thread) and a LogRecord factory stamps it onto every record, whichever
logger emits it, so the engine's "version conflict, retrying" line can be
tied back to the request that hit it.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

_base_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs) -> logging.LogRecord:
    record = _base_factory(*args, **kwargs)
    record.request_id = request_id_var.get()  # type: ignore[attr-defined]
    return record


# Installed once; guarded against module reloads.
if not getattr(_base_factory, "_stamps_request_id", False):
    _record_factory._stamps_request_id = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(_record_factory)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request, log a summary line.

    The ID is taken from X-Request-ID when the caller supplies one (so a
    client retrying a timed-out event keeps its correlation ID) and is
    echoed back on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id

        return response
