"""
Observability Middleware.

Tags every request with a correlation ID, times it, and makes the ID
available to every log record emitted while the request is handled, so
engine logs (transitions, ledger overflow, rule failures) can be tied back
to the gate or weighbridge call that caused them.
"""

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("weighbridge")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(correlation_id)s] %(message)s"
CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    """Stamp the current request's correlation ID onto log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """Set the service log level and format. Safe to call more than once."""
    level = level.upper()
    root = logging.getLogger()
    if not any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(CorrelationIdFilter())
        root.addHandler(handler)
    root.setLevel(level)
    logger.setLevel(level)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        context = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }
        # 409s are expected operator outcomes (dispatch refused, duplicate check-in)
        if response.status_code >= 500:
            logger.error("Request failed", extra=context)
        elif response.status_code in (404, 409, 422):
            logger.info("Request rejected", extra=context)
        elif response.status_code >= 400:
            logger.warning("Request error", extra=context)
        else:
            logger.info("Request handled", extra=context)
        return response
