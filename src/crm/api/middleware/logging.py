"""Structured request logging middleware.

Each request gets a request id (taken from an incoming ``X-Request-ID``
header or generated) that is bound into structlog's context variables, so
the stage gate and scheduler events emitted while handling the request
carry it too. The completion event records:
- method, path, route template, status_code, duration_ms
- request_id (echoed back as the X-Request-ID response header)

JSON output in production, console output everywhere else.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.crm.config import Environment, get_settings
from src.crm.core.monitoring import route_template

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 128


def configure_structlog() -> None:
    """Configure stdlib logging and structlog processors for the environment."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request context for the duration of a request and logs its outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id(request)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start_time = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                status_code=500,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
            raise

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)

        response.headers[REQUEST_ID_HEADER] = request_id

        if response.status_code >= 500:
            log_method = logger.error
        elif response.status_code >= 400:
            # 409/422 are rule refusals
            log_method = logger.warning
        else:
            log_method = logger.info

        log_method(
            "request_completed",
            route=route_template(request),
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        structlog.contextvars.clear_contextvars()
        return response
