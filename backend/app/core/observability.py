"""
Observability helpers.

Logging setup for the van_tracking logger tree and a middleware that tags
every request (and every log line emitted while serving it) with a
correlation ID.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.config import settings

logger = logging.getLogger("van_tracking")

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

# Polled constantly by load balancers
QUIET_PATHS = {"/health"}


class CorrelationIdFilter(logging.Filter):
    """Copies the current correlation ID onto each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(level: str = None) -> None:
    """Attach a stream handler to the van_tracking logger once."""
    logger.setLevel((level or settings.log_level).upper())
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
    ))
    logger.addHandler(handler)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = correlation_id_var.set(correlation_id)
        start_time = time.time()

        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        process_time = (time.time() - start_time) * 1000  # ms
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(process_time)

        if request.url.path in QUIET_PATHS:
            return response

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
        }

        if response.status_code >= 500:
            logger.error("Request Failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request Error", extra=log_data)
        else:
            logger.info("Request API", extra=log_data)

        return response
