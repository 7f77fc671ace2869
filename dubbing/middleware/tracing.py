import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from dubbing.core.config import settings

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Request-ID"
SLOW_REQUEST_SECONDS = 1.0

trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")


class TraceIdFilter(logging.Filter):
    """Adds the current request's trace id to log records as ``trace_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = trace_id_var.get()
        return True


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Middleware for request tracing and correlation IDs."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.trace_header = TRACE_HEADER

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Get or generate trace ID
        trace_id = request.headers.get(self.trace_header) or str(uuid.uuid4())
        request.state.trace_id = trace_id
        token = trace_id_var.set(trace_id)
        try:
            response = await call_next(request)
        finally:
            trace_id_var.reset(token)
        response.headers[self.trace_header] = trace_id

        if settings.ENVIRONMENT == "development":
            logger.info(f"Request {trace_id}: {request.method} {request.url.path}")

        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Middleware for request timing and performance monitoring."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} "
                f"took {process_time:.2f}s (trace_id: {getattr(request.state, 'trace_id', '-')})"
            )

        return response
