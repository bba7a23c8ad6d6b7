"""HTTP middleware: request metrics, correlation IDs, server spans and access logs.

Registration order in main.py puts MetricsMiddleware outermost, so its
timings include every other layer, and RequestLoggingMiddleware innermost,
so its log lines carry the correlation ID and the span.
"""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.logging import clear_correlation_id, get_correlation_id, set_correlation_id
from storefront.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)
from storefront.core.tracing import request_span

logger = logging.getLogger("storefront.requests")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Order and method IDs in admin paths would otherwise make one series per row.
_PATH_ID_PATTERNS = (
    (re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE), "{id}"),
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
)


def route_template(path: str) -> str:
    """Collapse identifiers in a request path into placeholders."""
    for pattern, placeholder in _PATH_ID_PATTERNS:
        path = pattern.sub(placeholder, path)
    return path


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests and observe their latency per method and route."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        labels = {"method": request.method, "endpoint": route_template(request.url.path)}
        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(**labels)
        in_progress.inc()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUEST_DURATION_SECONDS.labels(**labels).observe(time.perf_counter() - started)
            HTTP_REQUESTS_TOTAL.labels(**labels, status_code=str(status_code)).inc()
            in_progress.dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopt the caller's X-Correlation-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


class TracingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with request_span(request.method, request.url.path, get_correlation_id()) as span:
            response = await call_next(request)
            span.set_attribute("http.status_code", response.status_code)
            return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line when a request arrives and one when it finishes or fails."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        context = {"method": request.method, "path": request.url.path}
        logger.info(
            "Request started",
            extra={
                **context,
                "query": str(request.query_params),
                "client_ip": request.client.host if request.client else None,
            },
        )
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={**context, "duration_ms": _elapsed_ms(started), "error": str(e)},
                exc_info=True,
            )
            raise
        logger.info(
            "Request completed",
            extra={**context, "status_code": response.status_code, "duration_ms": _elapsed_ms(started)},
        )
        return response


__all__ = [
    "CORRELATION_ID_HEADER",
    "CorrelationIdMiddleware",
    "MetricsMiddleware",
    "RequestLoggingMiddleware",
    "TracingMiddleware",
    "route_template",
]
