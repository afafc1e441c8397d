"""Request id propagation and access logging."""

from __future__ import annotations

import logging
import time

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from token_manager.observability.request_context import (
    ensure_request_id,
    reset_request_id,
    set_request_id,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS = frozenset({"/api/health"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, echo it back and log the outcome.

    Health checks are logged at DEBUG so they don't drown out token traffic.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = ensure_request_id(request.headers.get(REQUEST_ID_HEADER))
        context_token = set_request_id(request_id)
        request.state.request_id = request_id
        trace.get_current_span().set_attribute("request.id", request_id)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
            logger.log(
                level,
                "%s %s -> %s in %.1fms",
                request.method,
                request.url.path,
                status_code,
                elapsed_ms,
            )
            reset_request_id(context_token)
