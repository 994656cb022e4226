"""HTTP middleware: request correlation plus access logging and metrics."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.shared.observability.metrics import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# /api/v1/ai/roleplay/respond keeps its sub-route; deeper paths collapse
_MAX_ENDPOINT_SEGMENTS = 6

CallNext = Callable[[Request], Awaitable[Response]]


def normalize_endpoint(path: str) -> str:
    """Bound the ``endpoint`` label cardinality."""
    if not path.startswith("/api/"):
        return path
    return "/".join(path.split("/")[:_MAX_ENDPOINT_SEGMENTS])


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds the caller's request id (or a fresh one) to every log line."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class AccessMiddleware(BaseHTTPMiddleware):
    """Times each request once, then logs it and feeds the HTTP metrics."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        endpoint = normalize_endpoint(request.url.path)
        status = response.status_code
        HTTP_REQUESTS_TOTAL.labels(
            method=request.method, endpoint=endpoint, status_code=status
        ).inc()
        HTTP_REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(elapsed)

        emit = logger.warning if status >= 500 else logger.info
        emit(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=status,
            duration_ms=round(elapsed * 1000, 2),
            client=request.client.host if request.client else "unknown",
        )
        return response
