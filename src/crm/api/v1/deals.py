"""REST API endpoints for deal stage gating.

Exposes the stage definition table, transition checks for the board and
the deal form, and validation of imported rows. Nothing here persists a
deal: the caller writes the returned record through its own data layer.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.crm.api.deps import get_import_validator, get_stage_gate
from src.crm.core.monitoring import record_transition_check
from src.crm.deals.gate import InvalidTransitionError, StageGate
from src.crm.deals.importer import DealImportValidator
from src.crm.deals.schemas import (
    DealStage,
    ImportSummary,
    StageDefinition,
    TransitionCheck,
)
from src.crm.deals.stages import (
    LINEAR_STAGES,
    PRE_TERMINAL_STAGE,
    TERMINAL_STAGES,
    stage_fields,
    visible_fields,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class StageTableResponse(BaseModel):
    """The pipeline ordering and the per-stage definitions."""

    linear_stages: list[str]
    terminal_stages: list[str]
    pre_terminal_stage: str
    definitions: list[StageDefinition]


class StageFieldsResponse(BaseModel):
    stage: str
    cumulative: bool
    fields: list[str]


class TransitionCheckResponse(BaseModel):
    """A transition decision plus the context the UI needs to render controls."""

    check: TransitionCheck
    can_advance: bool
    next_stage: str | None = None
    available_targets: list[str] = Field(default_factory=list)
    missing_for_current_stage: list[str] = Field(default_factory=list)


class TransitionApplyResponse(BaseModel):
    record: dict[str, Any]


# ── Request Schemas ──────────────────────────────────────────────────────────


class TransitionRequest(BaseModel):
    """A deal record snapshot and the stage the user wants to move it to."""

    record: dict[str, Any]
    target: str


class ImportValidationRequest(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/stages", response_model=StageTableResponse)
async def list_stages(gate: StageGate = Depends(get_stage_gate)) -> StageTableResponse:
    """Return the stage ordering and definition table."""
    return StageTableResponse(
        linear_stages=[s.value for s in LINEAR_STAGES],
        terminal_stages=[s.value for s in TERMINAL_STAGES],
        pre_terminal_stage=PRE_TERMINAL_STAGE.value,
        definitions=list(gate.definitions.values()),
    )


@router.get("/stages/{stage}/fields", response_model=StageFieldsResponse)
async def get_stage_fields(
    stage: str,
    cumulative: bool = Query(False, description="Include fields of earlier stages"),
    gate: StageGate = Depends(get_stage_gate),
) -> StageFieldsResponse:
    """Fields the deal form shows for a stage."""
    parsed = DealStage.parse(stage)
    if parsed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown deal stage: {stage}",
        )
    if cumulative:
        fields = visible_fields(parsed, gate.definitions)
    else:
        fields = stage_fields(parsed, gate.definitions)
    return StageFieldsResponse(stage=parsed.value, cumulative=cumulative, fields=fields)


@router.post("/transitions/check", response_model=TransitionCheckResponse)
async def check_transition(
    body: TransitionRequest,
    gate: StageGate = Depends(get_stage_gate),
) -> TransitionCheckResponse:
    """Decide whether the record may move to the target stage."""
    check = gate.check_transition(body.record, body.target)
    record_transition_check(check.from_stage, check.to_stage, check.allowed)

    next_stage = gate.next_stage(body.record.get("stage"))
    return TransitionCheckResponse(
        check=check,
        can_advance=gate.can_advance(body.record),
        next_stage=next_stage.value if next_stage else None,
        available_targets=[s.value for s in gate.available_targets(body.record)],
        missing_for_current_stage=gate.missing_fields(body.record),
    )


@router.post("/transitions/apply", response_model=TransitionApplyResponse)
async def apply_transition(
    body: TransitionRequest,
    gate: StageGate = Depends(get_stage_gate),
) -> TransitionApplyResponse:
    """Return the record moved to the target stage, or 409 with the missing fields."""
    try:
        record = gate.apply_transition(body.record, body.target)
    except InvalidTransitionError as exc:
        record_transition_check(exc.from_stage, exc.to_stage, False)
        logger.info(
            "Stage transition refused",
            from_stage=exc.from_stage,
            to_stage=exc.to_stage,
            missing_fields=exc.missing_fields,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": exc.reason,
                "from_stage": exc.from_stage,
                "to_stage": exc.to_stage,
                "missing_fields": exc.missing_fields,
            },
        ) from exc

    record_transition_check(body.record.get("stage"), record["stage"], True)
    return TransitionApplyResponse(record=record)


@router.post("/import/validate", response_model=ImportSummary)
async def validate_import(
    body: ImportValidationRequest,
    validator: DealImportValidator = Depends(get_import_validator),
) -> ImportSummary:
    """Validate parsed CSV rows before they are imported."""
    return validator.validate_rows(body.rows)
