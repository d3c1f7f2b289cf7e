"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics by route template
- record_transition_check(): Counter for stage gate decisions
- record_schedule_rejection(): Counter for refused meeting submissions
- init_sentry(): Initialize Sentry for the API process
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.crm.deals.schemas import DealStage

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# ── Rule Engine Metrics ──────────────────────────────────────────────────────

stage_transition_checks_total = Counter(
    "stage_transition_checks_total",
    "Stage transition decisions by outcome",
    ["from_stage", "to_stage", "outcome"],
)

meeting_schedule_rejections_total = Counter(
    "meeting_schedule_rejections_total",
    "Meeting submissions refused before persistence",
    ["reason"],
)


def _stage_label(stage: object) -> str:
    """Stage name for a metric label; anything unrecognised is ``unknown``."""
    parsed = DealStage.parse(stage)
    return parsed.value if parsed is not None else "unknown"


def record_transition_check(from_stage: object, to_stage: object, allowed: bool) -> None:
    stage_transition_checks_total.labels(
        from_stage=_stage_label(from_stage),
        to_stage=_stage_label(to_stage),
        outcome="allowed" if allowed else "blocked",
    ).inc()


def record_schedule_rejection(reason: str) -> None:
    meeting_schedule_rejections_total.labels(reason=reason).inc()


# ── Metrics Middleware ───────────────────────────────────────────────────────


def route_template(request: Request) -> str:
    """Mounted route path (e.g. ``/v1/deals/stages/{stage}/fields``), or ``unmatched``.

    Used as a label in place of the raw URL path. When the matched route only
    knows its path relative to a mounted prefix, the prefix is recovered from
    ``root_path`` or from the concrete request path.
    """
    template = getattr(request.scope.get("route"), "path", None)
    if template is None:
        return "unmatched"
    root_path = request.scope.get("root_path", "")
    if root_path and not template.startswith(root_path):
        template = root_path + template

    concrete = template
    for name, value in request.scope.get("path_params", {}).items():
        concrete = concrete.replace("{" + name + "}", str(value))
    path = request.scope.get("path", "")
    if path != concrete and path.endswith(concrete):
        return path[: -len(concrete)] + template
    return template


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself. Requests are labelled by route
    template, so unmatched paths share one series.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time
        endpoint = route_template(request)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
