"""FastAPI dependency injection for the rule engines.

Endpoints receive the StageGate, DealImportValidator and ScheduleResolver
through these dependencies. Instances live on ``app.state`` (set by the
application factory) so tests can swap in a resolver with a pinned clock.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.crm.deals.gate import StageGate
from src.crm.deals.importer import DealImportValidator
from src.crm.meetings.scheduler import ScheduleResolver


def _from_state(request: Request, name: str):
    instance = getattr(request.app.state, name, None)
    if instance is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return instance


def get_stage_gate(request: Request) -> StageGate:
    return _from_state(request, "stage_gate")


def get_import_validator(request: Request) -> DealImportValidator:
    return _from_state(request, "import_validator")


def get_schedule_resolver(request: Request) -> ScheduleResolver:
    return _from_state(request, "schedule_resolver")
