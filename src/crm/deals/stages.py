"""Declarative stage definition table for the deal pipeline.

The single source of stage-field knowledge: the form renderer, StageGate
and the import validator all read from STAGE_DEFINITIONS instead of
carrying their own field lists.
"""

from __future__ import annotations

from src.crm.deals.schemas import (
    DealStage,
    FieldKind,
    FieldSpec,
    StageDefinition,
)

# ── Stage Ordering ──────────────────────────────────────────────────────────

# Linear progression; each stage has exactly one successor except the last.
LINEAR_STAGES: list[DealStage] = [
    DealStage.LEAD,
    DealStage.DISCUSSIONS,
    DealStage.QUALIFIED,
    DealStage.RFQ,
    DealStage.OFFERED,
]

# Final outcomes. Forward entry is only from PRE_TERMINAL_STAGE; among
# themselves they are ordered like any other stage (Lost -> Won is backward).
TERMINAL_STAGES: list[DealStage] = [
    DealStage.WON,
    DealStage.LOST,
    DealStage.DROPPED,
]

PRE_TERMINAL_STAGE: DealStage = DealStage.OFFERED

# Position in the full pipeline; lower rank means earlier.
STAGE_RANK: dict[DealStage, int] = {
    stage: idx for idx, stage in enumerate(LINEAR_STAGES + TERMINAL_STAGES)
}

ALWAYS_VISIBLE_FIELDS: list[str] = ["internal_comment"]

_LEVELS = ["Low", "Medium", "High"]


# ── Definition Table ────────────────────────────────────────────────────────

STAGE_DEFINITIONS: dict[DealStage, StageDefinition] = {
    DealStage.LEAD: StageDefinition(
        stage=DealStage.LEAD,
        fields=[
            FieldSpec(name="project_name", label="Project Name"),
            FieldSpec(name="customer_name", label="Customer Name"),
            FieldSpec(name="lead_name", label="Lead Name"),
            FieldSpec(name="lead_owner", label="Lead Owner"),
            FieldSpec(name="region", label="Region"),
            FieldSpec(name="priority", label="Priority", kind=FieldKind.NUMBER),
            FieldSpec(name="probability", label="Probability (%)", kind=FieldKind.NUMBER),
            FieldSpec(name="internal_comment", label="Internal Comment"),
        ],
        required=["project_name", "customer_name", "lead_name", "lead_owner", "probability"],
    ),
    DealStage.DISCUSSIONS: StageDefinition(
        stage=DealStage.DISCUSSIONS,
        fields=[
            FieldSpec(
                name="expected_closing_date",
                label="Expected Closing Date",
                kind=FieldKind.DATE,
            ),
            FieldSpec(name="customer_need", label="Customer Need"),
            FieldSpec(name="customer_challenges", label="Customer Challenges"),
            FieldSpec(
                name="relationship_strength",
                label="Relationship Strength",
                kind=FieldKind.CHOICE,
                options=_LEVELS,
            ),
        ],
        required=[
            "expected_closing_date",
            "customer_need",
            "customer_challenges",
            "relationship_strength",
        ],
    ),
    DealStage.QUALIFIED: StageDefinition(
        stage=DealStage.QUALIFIED,
        fields=[
            FieldSpec(name="budget", label="Budget"),
            FieldSpec(
                name="business_value",
                label="Business Value",
                kind=FieldKind.CHOICE,
                options=_LEVELS,
            ),
            FieldSpec(
                name="decision_maker_level",
                label="Decision Maker Level",
                kind=FieldKind.CHOICE,
                options=["Not Identified", "Identified", "Done"],
            ),
        ],
        required=["budget", "business_value", "decision_maker_level"],
    ),
    DealStage.RFQ: StageDefinition(
        stage=DealStage.RFQ,
        fields=[
            FieldSpec(name="is_recurring", label="Is Recurring", kind=FieldKind.BOOLEAN),
            FieldSpec(name="project_type", label="Project Type"),
            FieldSpec(name="duration", label="Duration (months)", kind=FieldKind.NUMBER),
            FieldSpec(name="revenue", label="Revenue", kind=FieldKind.NUMBER),
            FieldSpec(name="start_date", label="Start Date", kind=FieldKind.DATE),
            FieldSpec(name="end_date", label="End Date", kind=FieldKind.DATE),
        ],
        required=["is_recurring", "project_type", "duration", "revenue", "start_date", "end_date"],
    ),
    DealStage.OFFERED: StageDefinition(
        stage=DealStage.OFFERED,
        fields=[
            FieldSpec(
                name="total_contract_value",
                label="Total Contract Value",
                kind=FieldKind.NUMBER,
            ),
            FieldSpec(
                name="currency_type",
                label="Currency",
                kind=FieldKind.CHOICE,
                options=["EUR", "USD", "INR"],
            ),
            FieldSpec(name="action_items", label="Action Items"),
            FieldSpec(name="current_status", label="Current Status"),
        ],
        required=["total_contract_value", "currency_type", "action_items", "current_status"],
    ),
    # Terminal reason fields are filled after the move, never as a precondition.
    DealStage.WON: StageDefinition(
        stage=DealStage.WON,
        fields=[FieldSpec(name="won_reason", label="Won Reason")],
        required=["won_reason", "start_date"],
        terminal=True,
    ),
    DealStage.LOST: StageDefinition(
        stage=DealStage.LOST,
        fields=[
            FieldSpec(name="lost_reason", label="Lost Reason"),
            FieldSpec(name="need_improvement", label="Need Improvement"),
        ],
        required=["lost_reason", "need_improvement"],
        terminal=True,
    ),
    DealStage.DROPPED: StageDefinition(
        stage=DealStage.DROPPED,
        fields=[FieldSpec(name="drop_reason", label="Drop Reason")],
        required=["drop_reason"],
        terminal=True,
    ),
}


# ── Derived Lookups ─────────────────────────────────────────────────────────


def stage_fields(
    stage: DealStage | str,
    definitions: dict[DealStage, StageDefinition] | None = None,
) -> list[str]:
    """Field names introduced by one stage (the form's current-stage view)."""
    table = definitions or STAGE_DEFINITIONS
    parsed = DealStage.parse(stage)
    if parsed is None or parsed not in table:
        return []
    return table[parsed].field_names


def visible_fields(
    stage: DealStage | str,
    definitions: dict[DealStage, StageDefinition] | None = None,
) -> list[str]:
    """Cumulative field names for a stage (the form's all-stages view).

    Includes every linear stage's fields up to ``stage``, the terminal
    stage's own reason fields, and the always-visible comment field.
    """
    table = definitions or STAGE_DEFINITIONS
    parsed = DealStage.parse(stage)
    if parsed is None:
        return list(ALWAYS_VISIBLE_FIELDS)

    rank = STAGE_RANK[parsed]
    fields: list[str] = []
    for linear in LINEAR_STAGES[: rank + 1]:
        if linear in table:
            fields.extend(table[linear].field_names)

    if parsed in TERMINAL_STAGES and parsed in table:
        fields.extend(table[parsed].field_names)

    for name in ALWAYS_VISIBLE_FIELDS:
        if name not in fields:
            fields.append(name)
    return fields


def field_spec(
    name: str,
    definitions: dict[DealStage, StageDefinition] | None = None,
) -> FieldSpec | None:
    """Look up a field by name across every stage."""
    table = definitions or STAGE_DEFINITIONS
    for definition in table.values():
        for spec in definition.fields:
            if spec.name == name:
                return spec
    return None
