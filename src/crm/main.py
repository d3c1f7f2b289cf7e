"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the rule engines on ``app.state``, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.crm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crm.api.v1 import health
from src.crm.api.v1.router import router as v1_router
from src.crm.config import get_settings
from src.crm.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.crm.deals.gate import StageGate
from src.crm.deals.importer import DealImportValidator
from src.crm.meetings.scheduler import ScheduleResolver


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: configure logging and Sentry on startup."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    log.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        default_timezone=settings.DEFAULT_TIMEZONE,
        slot_interval_minutes=settings.SLOT_INTERVAL_MINUTES,
    )
    yield
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Pipeline CRM Rules API",
        version="0.1.0",
        description="Deal stage gating and timezone-aware meeting scheduling",
        lifespan=lifespan,
    )

    stage_gate = StageGate()
    app.state.stage_gate = stage_gate
    app.state.import_validator = DealImportValidator(stage_gate)
    app.state.schedule_resolver = ScheduleResolver.from_settings(settings)

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
