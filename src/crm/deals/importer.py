"""Validation of imported deal rows against the stage definition table.

The CSV parsing itself happens upstream; this module receives plain rows
(field name -> value) and decides whether each one can be imported and
whether its declared stage is internally consistent, i.e. every stage the
deal has already left is complete.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from src.crm.deals.gate import StageGate, is_present
from src.crm.deals.schemas import (
    DealRecord,
    DealStage,
    FieldKind,
    ImportRowResult,
    ImportSummary,
)
from src.crm.deals.stages import LINEAR_STAGES, STAGE_RANK

logger = structlog.get_logger(__name__)


class DealImportValidator:
    """Checks imported deal rows before they are handed to persistence.

    Args:
        gate: StageGate whose definition table drives completeness checks.
    """

    def __init__(self, gate: StageGate | None = None) -> None:
        self._gate = gate or StageGate()

    def departed_stages(self, stage: DealStage) -> list[DealStage]:
        """Linear stages a deal in ``stage`` must already have completed."""
        return LINEAR_STAGES[: STAGE_RANK[stage]]

    def validate_row(self, row: DealRecord, index: int = 0) -> ImportRowResult:
        raw_name = row.get("deal_name")
        deal_name = str(raw_name).strip() if raw_name is not None else None
        raw_stage = row.get("stage")
        result = ImportRowResult(
            row=index,
            deal_name=deal_name or None,
            stage=str(raw_stage).strip() if raw_stage is not None else None,
        )

        if not deal_name:
            result.errors.append("missing deal_name")

        stage = DealStage.parse(raw_stage)
        if stage is None:
            result.errors.append(f'invalid stage "{raw_stage}"')

        result.errors.extend(self._choice_errors(row))
        result.valid = not result.errors

        if stage is not None:
            for departed in self.departed_stages(stage):
                missing = self._gate.missing_fields(row, departed)
                if missing:
                    result.missing_by_stage[departed.value] = missing
            result.consistent = not result.missing_by_stage

        if not result.valid:
            logger.warning("Import row rejected", row=index, errors=result.errors)
        elif not result.consistent:
            logger.info(
                "Import row stage inconsistent",
                row=index,
                stage=result.stage,
                missing_by_stage=result.missing_by_stage,
            )
        return result

    def validate_rows(self, rows: Iterable[DealRecord]) -> ImportSummary:
        """Validate a batch, numbering rows from 1 as a spreadsheet does."""
        summary = ImportSummary()
        for index, row in enumerate(rows, start=1):
            result = self.validate_row(row, index)
            summary.rows.append(result)
            summary.total += 1
            if result.valid:
                summary.valid += 1
            else:
                summary.invalid += 1
            if not result.consistent:
                summary.inconsistent += 1

        logger.info(
            "Import batch validated",
            total=summary.total,
            valid=summary.valid,
            invalid=summary.invalid,
            inconsistent=summary.inconsistent,
        )
        return summary

    def _choice_errors(self, row: DealRecord) -> list[str]:
        errors: list[str] = []
        for definition in self._gate.definitions.values():
            for spec in definition.fields:
                if spec.kind != FieldKind.CHOICE or not spec.options:
                    continue
                value = row.get(spec.name)
                if not is_present(value):
                    continue
                if str(value).strip() not in spec.options:
                    errors.append(
                        f'invalid {spec.name} "{value}" (expected one of: '
                        f"{', '.join(spec.options)})"
                    )
        return errors
