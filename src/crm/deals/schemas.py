"""Pydantic schemas for the deal pipeline -- stages, field specs, gating results.

Defines the structured types shared by the stage definition table, the
StageGate and the import validator:
- Enums: DealStage, FieldKind
- Definition table rows: FieldSpec, StageDefinition
- Gating results: TransitionCheck
- Import results: ImportRowResult, ImportSummary

Deal records themselves stay plain mappings (field name -> value); the
persistence layer owns their shape.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

DealRecord = Mapping[str, Any]


# ── Enums ───────────────────────────────────────────────────────────────────


class DealStage(str, Enum):
    """Sales pipeline stage for a deal."""

    LEAD = "Lead"
    DISCUSSIONS = "Discussions"
    QUALIFIED = "Qualified"
    RFQ = "RFQ"
    OFFERED = "Offered"
    WON = "Won"
    LOST = "Lost"
    DROPPED = "Dropped"

    @classmethod
    def parse(cls, value: Any) -> DealStage | None:
        """Return the matching stage, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


class FieldKind(str, Enum):
    """Value type of a stage-scoped deal field."""

    TEXT = "text"
    CHOICE = "choice"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


# ── Definition Table ────────────────────────────────────────────────────────


class FieldSpec(BaseModel):
    """One stage-scoped field on a deal record."""

    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    options: list[str] = Field(
        default_factory=list, description="Allowed values for CHOICE fields"
    )


class StageDefinition(BaseModel):
    """Fields introduced by a stage and the subset required to leave it."""

    stage: DealStage
    fields: list[FieldSpec] = Field(default_factory=list)
    required: list[str] = Field(
        default_factory=list,
        description="Field names that must be present before the deal leaves this stage",
    )
    terminal: bool = False

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


# ── Gating Results ──────────────────────────────────────────────────────────


class TransitionCheck(BaseModel):
    """Outcome of asking whether a record may move to a target stage."""

    from_stage: str | None
    to_stage: str
    allowed: bool
    missing_fields: list[str] = Field(default_factory=list)
    reason: str | None = None


# ── Import Results ──────────────────────────────────────────────────────────


class ImportRowResult(BaseModel):
    """Validation result for one imported deal row."""

    row: int
    deal_name: str | None = None
    stage: str | None = None
    valid: bool = True
    consistent: bool = True
    errors: list[str] = Field(default_factory=list)
    missing_by_stage: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Required fields absent for each stage the deal has already left",
    )


class ImportSummary(BaseModel):
    """Aggregate result for a batch of imported rows."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    inconsistent: int = 0
    rows: list[ImportRowResult] = Field(default_factory=list)
