"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. The
service has no external dependencies, so readiness only verifies that the
rule engines were initialised and that the tz database is usable.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.crm.config import get_settings
from src.crm.meetings.timezones import is_valid_timezone

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check -- just that the server is running."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: engines on app.state and the default timezone resolvable.

    Returns 200 if all pass, 503 otherwise.
    """
    settings = get_settings()
    checks: dict = {
        "stage_gate": "ok" if getattr(request.app.state, "stage_gate", None) else "missing",
        "schedule_resolver": (
            "ok" if getattr(request.app.state, "schedule_resolver", None) else "missing"
        ),
        "tzdata": "ok" if is_valid_timezone(settings.DEFAULT_TIMEZONE) else "error",
    }
    all_healthy = all(value == "ok" for value in checks.values())

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
