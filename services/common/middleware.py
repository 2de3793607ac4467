"""FastAPI middleware for request correlation and request/response logging."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import ClassVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variable for storing correlation ID in async context.
# Defined before the logging import below: get_logger reads it.
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get correlation ID from async context."""
    return _correlation_id.get()


from services.common.structured_logging import (  # noqa: E402
    correlation_context,
    get_logger,
)

logger = get_logger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Middleware for correlation IDs, request/response logging, and timing.

    The correlation ID is taken from the ``X-Correlation-ID`` header (or the
    ``correlation_id`` query parameter), generated when absent, bound to the
    structlog context for the duration of the request, and echoed back on
    the response.
    """

    CORRELATION_HEADER = "X-Correlation-ID"
    # Paths to exclude from verbose logging
    EXCLUDED_PATHS: ClassVar[set[str]] = {"/health/live", "/health/ready"}

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = (
            request.headers.get(self.CORRELATION_HEADER)
            or request.query_params.get("correlation_id")
            or str(uuid.uuid4())
        )
        token = _correlation_id.set(correlation_id)

        should_log = request.url.path not in self.EXCLUDED_PATHS
        start_time = time.perf_counter()

        try:
            with correlation_context(correlation_id):
                if should_log:
                    logger.info(
                        "http.request.start",
                        method=request.method,
                        path=request.url.path,
                    )

                try:
                    response = await call_next(request)
                except Exception as exc:
                    logger.error(
                        "http.request.failed",
                        method=request.method,
                        path=request.url.path,
                        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    raise

                if should_log:
                    logger.info(
                        "http.request.complete",
                        method=request.method,
                        path=request.url.path,
                        status_code=response.status_code,
                        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    )
        finally:
            _correlation_id.reset(token)

        response.headers[self.CORRELATION_HEADER] = correlation_id
        return response


__all__ = ["ObservabilityMiddleware", "get_correlation_id"]
