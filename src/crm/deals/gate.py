"""Stage gate for the deal pipeline.

Decides which stage transitions are legal for a deal record and which
required fields are missing to unlock the next one. Every query is a total
function over an immutable snapshot of the record: nothing here persists a
transition, and nothing raises except ``require_transition``, which exists
for callers that prefer exceptions over booleans.

Rules:
- Backward moves (to an earlier stage in Lead .. Offered, Won, Lost,
  Dropped order) are always allowed, without gating, so Lost -> Won is fine.
- A move to the immediate successor requires the current stage to be complete.
- From Offered, a move to Won / Lost / Dropped requires Offered to be
  complete; the terminal stage's own reason fields are filled afterwards.
- Skipping stages forward (including Won -> Lost or Lost -> Dropped) and
  anything involving an unknown stage are refused.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from src.crm.deals.schemas import (
    DealRecord,
    DealStage,
    StageDefinition,
    TransitionCheck,
)
from src.crm.deals.stages import (
    LINEAR_STAGES,
    PRE_TERMINAL_STAGE,
    STAGE_DEFINITIONS,
    STAGE_RANK,
    TERMINAL_STAGES,
)

logger = structlog.get_logger(__name__)

FORWARD_ONLY_MESSAGE = "Deals can only move forward one stage at a time."


class InvalidTransitionError(ValueError):
    """Raised when a requested stage move violates the gating rules."""

    def __init__(
        self,
        from_stage: str | None,
        to_stage: str,
        missing_fields: Iterable[str] = (),
        reason: str | None = None,
    ) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.missing_fields = list(missing_fields)
        if self.missing_fields:
            detail = f"Complete required fields first: {', '.join(self.missing_fields)}"
        else:
            detail = reason or FORWARD_ONLY_MESSAGE
        self.reason = detail
        super().__init__(f"Invalid stage transition: {from_stage} -> {to_stage}. {detail}")


def _stage_value(stage: Any) -> str | None:
    if isinstance(stage, DealStage):
        return stage.value
    if stage is None:
        return None
    return str(stage)


def is_present(value: Any) -> bool:
    """Whether a field value counts as filled in.

    Booleans are present once explicitly set, so ``False`` is distinct
    from unset. Numbers, including zero, are present.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return True
    return str(value).strip() != ""


class StageGate:
    """Gating decisions over a stage definition table.

    Args:
        definitions: Stage definition table. Defaults to STAGE_DEFINITIONS;
            stages absent from a custom table have no required fields.
    """

    def __init__(self, definitions: dict[DealStage, StageDefinition] | None = None) -> None:
        self._definitions = definitions if definitions is not None else STAGE_DEFINITIONS

    @property
    def definitions(self) -> dict[DealStage, StageDefinition]:
        return self._definitions

    # ── Lookups ─────────────────────────────────────────────────────────

    def required_fields(self, stage: DealStage | str | None) -> frozenset[str]:
        """Fields that must be present before a deal leaves ``stage``."""
        parsed = DealStage.parse(stage)
        if parsed is None or parsed not in self._definitions:
            return frozenset()
        return frozenset(self._definitions[parsed].required)

    def next_stage(self, stage: DealStage | str | None) -> DealStage | None:
        """The single linear successor, or None for terminal/unknown stages.

        The pre-terminal stage has no single successor: its outcomes are
        reached through ``can_move_to``.
        """
        parsed = DealStage.parse(stage)
        if parsed is None or parsed not in LINEAR_STAGES:
            return None
        idx = LINEAR_STAGES.index(parsed)
        if idx >= len(LINEAR_STAGES) - 1:
            return None
        return LINEAR_STAGES[idx + 1]

    # ── Completeness ────────────────────────────────────────────────────

    def present_fields(self, record: DealRecord) -> set[str]:
        return {name for name, value in record.items() if is_present(value)}

    def missing_fields(
        self, record: DealRecord, stage: DealStage | str | None = None
    ) -> list[str]:
        """Required fields of ``stage`` (default: the record's stage) not yet filled.

        Ordered as declared in the definition table for stable messaging.
        """
        target = record.get("stage") if stage is None else stage
        parsed = DealStage.parse(target)
        if parsed is None or parsed not in self._definitions:
            return []
        present = self.present_fields(record)
        return [name for name in self._definitions[parsed].required if name not in present]

    def is_complete(self, record: DealRecord, stage: DealStage | str | None = None) -> bool:
        """True iff every required field of the stage has a non-empty value."""
        return not self.missing_fields(record, stage)

    # ── Transitions ─────────────────────────────────────────────────────

    def can_advance(self, record: DealRecord) -> bool:
        return self.next_stage(record.get("stage")) is not None and self.is_complete(record)

    def can_move_to(self, record: DealRecord, target: DealStage | str) -> bool:
        return self.check_transition(record, target).allowed

    def check_transition(self, record: DealRecord, target: DealStage | str) -> TransitionCheck:
        """Decide a move and explain a refusal.

        Returns:
            TransitionCheck with ``allowed`` and, when refused because the
            departing stage is incomplete, the missing field names.
        """
        raw_current = record.get("stage")
        current = DealStage.parse(raw_current)
        wanted = DealStage.parse(target)
        from_value = _stage_value(raw_current)
        to_value = _stage_value(target) or ""

        if current is None or wanted is None:
            logger.debug(
                "Unknown stage in transition check",
                from_stage=from_value,
                to_stage=to_value,
            )
            return TransitionCheck(
                from_stage=from_value,
                to_stage=to_value,
                allowed=False,
                reason="Unknown deal stage",
            )

        if current == wanted:
            return TransitionCheck(
                from_stage=current.value, to_stage=wanted.value, allowed=True
            )

        current_rank = STAGE_RANK[current]
        wanted_rank = STAGE_RANK[wanted]

        if wanted_rank < current_rank:
            return TransitionCheck(
                from_stage=current.value, to_stage=wanted.value, allowed=True
            )

        is_successor = wanted == self.next_stage(current)
        is_outcome = current == PRE_TERMINAL_STAGE and wanted in TERMINAL_STAGES
        if not (is_successor or is_outcome):
            return TransitionCheck(
                from_stage=current.value,
                to_stage=wanted.value,
                allowed=False,
                reason=FORWARD_ONLY_MESSAGE,
            )

        missing = self.missing_fields(record, current)
        if missing:
            logger.debug(
                "Transition blocked by missing fields",
                from_stage=current.value,
                to_stage=wanted.value,
                missing=missing,
            )
            return TransitionCheck(
                from_stage=current.value,
                to_stage=wanted.value,
                allowed=False,
                missing_fields=missing,
                reason=f"Complete required fields first: {', '.join(missing)}",
            )

        return TransitionCheck(from_stage=current.value, to_stage=wanted.value, allowed=True)

    def require_transition(self, record: DealRecord, target: DealStage | str) -> None:
        """Raise InvalidTransitionError unless ``can_move_to`` holds.

        Raises:
            InvalidTransitionError: With the missing fields of the departing stage.
        """
        check = self.check_transition(record, target)
        if not check.allowed:
            raise InvalidTransitionError(
                check.from_stage, check.to_stage, check.missing_fields, check.reason
            )

    def available_targets(self, record: DealRecord) -> list[DealStage]:
        """Stages offered in the "Move to" menu, in pipeline order."""
        current = DealStage.parse(record.get("stage"))
        if current is None:
            return []
        ordered = LINEAR_STAGES + TERMINAL_STAGES
        return [
            stage
            for stage in ordered
            if stage != current and self.can_move_to(record, stage)
        ]

    def apply_transition(self, record: DealRecord, target: DealStage | str) -> dict[str, Any]:
        """Return a copy of ``record`` moved to ``target``.

        Fields of earlier stages are kept. The caller persists the result.

        Raises:
            InvalidTransitionError: If the move is not allowed.
        """
        self.require_transition(record, target)
        wanted = DealStage.parse(target)
        updated = dict(record)
        updated["stage"] = wanted.value if wanted is not None else target
        logger.info(
            "Deal stage transition applied",
            from_stage=_stage_value(record.get("stage")),
            to_stage=updated["stage"],
        )
        return updated
