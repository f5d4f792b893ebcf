"""structlog configuration and per-request access logging.

Every request gets a request_id (taken from an incoming X-Request-ID header
or generated) that is bound into structlog's contextvars, so all log lines
emitted while handling the request carry it, and is echoed back in the
response headers.

Production renders JSON lines; other environments use the console renderer.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Load balancer and scraper traffic is logged at debug level only
_QUIET_PATHS = ("/health", "/metrics")


def configure_structlog() -> None:
    """Configure structlog processors based on environment."""
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log with timing, request_id and the caller's tenant header.

    Widget chat requests carry no tenant header; their tenant is logged by
    the chat orchestrator once the widget key is resolved.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        fields = {
            "method": request.method,
            "path": request.url.path,
            "tenant_id": request.headers.get("X-Tenant-ID"),
        }
        start = time.perf_counter()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "request_error",
                    status_code=500,
                    duration_ms=_elapsed_ms(start),
                    **fields,
                )
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            status_code = response.status_code
            if request.url.path.startswith(_QUIET_PATHS):
                log = logger.debug
            elif status_code >= 500:
                log = logger.error
            elif status_code >= 400:
                log = logger.warning
            else:
                log = logger.info
            log(
                "request_completed",
                status_code=status_code,
                duration_ms=_elapsed_ms(start),
                **fields,
            )
        return response


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
