# ==== CORRELATION ID MIDDLEWARE ==== #

"""
Correlation ID middleware for request tracing.

Every request gets an ``X-Correlation-Id`` (taken from the caller or
generated), exposed on ``request.state`` for error bodies and echoed on
the response, with request latency recorded per route.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from parcel_billing.observability.metrics import http_request_duration_seconds
from parcel_billing.observability.tracing import get_tracer


tracer = get_tracer(__name__)

CORRELATION_HEADER = "X-Correlation-Id"


def get_correlation_id(request: Request) -> str:
    """Correlation id of the current request, ``"unknown"`` outside the middleware."""
    return getattr(request.state, "correlation_id", "unknown")


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()

        with tracer.start_as_current_span("http_request") as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.url", str(request.url))
            span.set_attribute("correlation_id", correlation_id)

            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id

            # --► METRICS COLLECTION
            route = request.scope.get("route")
            http_request_duration_seconds.labels(
                method=request.method,
                route=getattr(route, "path", "unmatched"),
                status_code=str(response.status_code),
            ).observe(time.perf_counter() - start_time)

            span.set_attribute("http.status_code", response.status_code)
            return response
