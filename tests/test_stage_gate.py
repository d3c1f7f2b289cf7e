"""Unit tests for StageGate -- field-gated deal stage transitions.

Tests cover:
- lookups: required_fields, next_stage, presence rules
- can_advance: complete/incomplete records for every stage with a successor
- check_transition: backward moves, successor gating, terminal shortcut,
  skipped stages, ordering among terminal stages, unknown stages
- require_transition / apply_transition: errors and copy semantics
- available_targets: the "Move to" menu
"""

from __future__ import annotations

import pytest

from src.crm.deals.gate import (
    FORWARD_ONLY_MESSAGE,
    InvalidTransitionError,
    StageGate,
    is_present,
)
from src.crm.deals.schemas import DealStage, FieldKind, FieldSpec, StageDefinition
from src.crm.deals.stages import LINEAR_STAGES, STAGE_DEFINITIONS, TERMINAL_STAGES

_ADVANCEABLE = [
    (stage, field)
    for stage in LINEAR_STAGES[:-1]
    for field in STAGE_DEFINITIONS[stage].required
]


# ── Lookups ─────────────────────────────────────────────────────────────────


class TestLookups:
    """Tests for required_fields and next_stage."""

    def test_required_fields_for_lead(self, gate: StageGate) -> None:
        assert gate.required_fields(DealStage.LEAD) == frozenset(
            {"project_name", "customer_name", "lead_name", "lead_owner", "probability"}
        )

    def test_required_fields_accepts_stage_name(self, gate: StageGate) -> None:
        assert gate.required_fields("Qualified") == frozenset(
            {"budget", "business_value", "decision_maker_level"}
        )

    def test_required_fields_unknown_stage_is_empty(self, gate: StageGate) -> None:
        assert gate.required_fields("Negotiation") == frozenset()

    @pytest.mark.parametrize(
        "stage,expected",
        [
            (DealStage.LEAD, DealStage.DISCUSSIONS),
            (DealStage.DISCUSSIONS, DealStage.QUALIFIED),
            (DealStage.QUALIFIED, DealStage.RFQ),
            (DealStage.RFQ, DealStage.OFFERED),
        ],
    )
    def test_next_stage_follows_pipeline(
        self, gate: StageGate, stage: DealStage, expected: DealStage
    ) -> None:
        assert gate.next_stage(stage) == expected

    @pytest.mark.parametrize("stage", ["Offered", "Won", "Lost", "Dropped", "bogus", None])
    def test_next_stage_none_without_single_successor(self, gate: StageGate, stage) -> None:
        assert gate.next_stage(stage) is None


class TestPresence:
    """A field counts as filled once it holds something other than blank text."""

    @pytest.mark.parametrize("value", ["x", 0, 0.0, False, True, "  padded  "])
    def test_present_values(self, value) -> None:
        assert is_present(value) is True

    @pytest.mark.parametrize("value", [None, "", "   ", "\t\n"])
    def test_missing_values(self, value) -> None:
        assert is_present(value) is False

    def test_missing_fields_keep_declared_order(self, gate: StageGate) -> None:
        record = {"stage": "Lead", "lead_name": "Priya"}
        assert gate.missing_fields(record) == [
            "project_name",
            "customer_name",
            "lead_owner",
            "probability",
        ]

    def test_missing_fields_for_explicit_stage(self, gate: StageGate, make_record) -> None:
        record = make_record("Offered", budget="   ")
        assert gate.missing_fields(record, DealStage.QUALIFIED) == ["budget"]
        assert gate.missing_fields(record) == []


# ── can_advance ─────────────────────────────────────────────────────────────


class TestCanAdvance:
    """Tests for StageGate.can_advance."""

    @pytest.mark.parametrize("stage", LINEAR_STAGES[:-1])
    def test_complete_record_can_advance(self, gate: StageGate, make_record, stage) -> None:
        assert gate.can_advance(make_record(stage.value)) is True

    @pytest.mark.parametrize("stage,field", _ADVANCEABLE)
    def test_removing_any_required_field_blocks(
        self, gate: StageGate, make_record, stage, field
    ) -> None:
        record = make_record(stage.value)
        del record[field]
        assert gate.can_advance(record) is False

    def test_blank_string_blocks(self, gate: StageGate, make_record) -> None:
        record = make_record("Discussions", customer_need="   ")
        assert gate.can_advance(record) is False

    def test_boolean_false_counts_as_set(self, gate: StageGate, make_record) -> None:
        record = make_record("RFQ", is_recurring=False)
        assert gate.can_advance(record) is True

    def test_unset_boolean_blocks(self, gate: StageGate, make_record) -> None:
        record = make_record("RFQ", is_recurring=None)
        assert gate.can_advance(record) is False
        assert gate.missing_fields(record) == ["is_recurring"]

    def test_pre_terminal_stage_cannot_advance(self, gate: StageGate, make_record) -> None:
        assert gate.can_advance(make_record("Offered")) is False

    def test_custom_table_discussions_to_qualified(self) -> None:
        definitions = {
            DealStage.DISCUSSIONS: StageDefinition(
                stage=DealStage.DISCUSSIONS,
                fields=[
                    FieldSpec(name="customer_need", label="Customer Need"),
                    FieldSpec(
                        name="decision_maker_present",
                        label="Decision Maker Present",
                        kind=FieldKind.BOOLEAN,
                    ),
                ],
                required=["customer_need", "decision_maker_present"],
            )
        }
        gate = StageGate(definitions)
        record = {
            "stage": "Discussions",
            "customer_need": "reduce cost",
            "decision_maker_present": True,
        }
        assert gate.can_advance(record) is True
        assert gate.next_stage(record["stage"]) == DealStage.QUALIFIED


# ── check_transition ────────────────────────────────────────────────────────


class TestCheckTransition:
    """Tests for StageGate.check_transition / can_move_to."""

    @pytest.mark.parametrize("current_idx", range(1, len(LINEAR_STAGES)))
    def test_backward_moves_ignore_completeness(self, gate: StageGate, current_idx) -> None:
        record = {"stage": LINEAR_STAGES[current_idx].value}
        for earlier in LINEAR_STAGES[:current_idx]:
            assert gate.can_move_to(record, earlier) is True

    @pytest.mark.parametrize("terminal", TERMINAL_STAGES)
    def test_terminal_can_move_back_to_any_linear_stage(self, gate: StageGate, terminal) -> None:
        record = {"stage": terminal.value}
        for stage in LINEAR_STAGES:
            assert gate.can_move_to(record, stage) is True

    def test_successor_requires_departing_stage(self, gate: StageGate) -> None:
        check = gate.check_transition({"stage": "Lead", "project_name": "X"}, "Discussions")
        assert check.allowed is False
        assert check.missing_fields == [
            "customer_name",
            "lead_name",
            "lead_owner",
            "probability",
        ]
        assert check.reason.startswith("Complete required fields first:")

    def test_successor_allowed_when_complete(self, gate: StageGate, make_record) -> None:
        check = gate.check_transition(make_record("Lead"), "Discussions")
        assert check.allowed is True
        assert check.from_stage == "Lead"
        assert check.to_stage == "Discussions"

    def test_skipping_forward_is_refused(self, gate: StageGate, make_record) -> None:
        check = gate.check_transition(make_record("Lead"), DealStage.QUALIFIED)
        assert check.allowed is False
        assert check.missing_fields == []
        assert check.reason == FORWARD_ONLY_MESSAGE

    @pytest.mark.parametrize("terminal", TERMINAL_STAGES)
    def test_offered_to_terminal_gated_on_offered(
        self, gate: StageGate, make_record, terminal
    ) -> None:
        assert gate.can_move_to(make_record("Offered"), terminal) is True

        incomplete = make_record("Offered", currency_type="")
        check = gate.check_transition(incomplete, terminal)
        assert check.allowed is False
        assert check.missing_fields == ["currency_type"]

    def test_terminal_reason_fields_not_required_to_enter(
        self, gate: StageGate, make_record
    ) -> None:
        record = make_record("Offered")
        assert "lost_reason" not in record
        assert gate.can_move_to(record, "Lost") is True

    def test_terminal_only_reachable_from_offered(self, gate: StageGate, make_record) -> None:
        check = gate.check_transition(make_record("RFQ"), "Won")
        assert check.allowed is False
        assert check.reason == FORWARD_ONLY_MESSAGE

    def test_later_terminal_moves_back_to_earlier_terminal(self, gate: StageGate) -> None:
        assert gate.can_move_to({"stage": "Lost"}, "Won") is True
        assert gate.can_move_to({"stage": "Dropped"}, "Won") is True
        assert gate.can_move_to({"stage": "Dropped"}, "Lost") is True

    def test_earlier_terminal_cannot_move_forward_to_later_terminal(
        self, gate: StageGate, make_record
    ) -> None:
        won = make_record("Won", won_reason="best price")
        assert gate.can_move_to(won, "Lost") is False
        assert gate.can_move_to(won, "Dropped") is False
        lost = make_record("Lost", lost_reason="price", need_improvement="pricing")
        check = gate.check_transition(lost, "Dropped")
        assert check.allowed is False
        assert check.reason == FORWARD_ONLY_MESSAGE

    def test_same_stage_is_allowed(self, gate: StageGate) -> None:
        assert gate.can_move_to({"stage": "Qualified"}, "Qualified") is True

    def test_unknown_current_stage_fails_closed(self, gate: StageGate) -> None:
        check = gate.check_transition({"stage": "Negotiation"}, "Lead")
        assert check.allowed is False
        assert check.reason == "Unknown deal stage"

    def test_unknown_target_fails_closed(self, gate: StageGate, make_record) -> None:
        assert gate.can_move_to(make_record("Lead"), "Closed") is False

    def test_missing_stage_field_fails_closed(self, gate: StageGate) -> None:
        check = gate.check_transition({}, "Lead")
        assert check.allowed is False
        assert check.from_stage is None


# ── require / apply ─────────────────────────────────────────────────────────


class TestRequireAndApply:
    """Tests for require_transition and apply_transition."""

    def test_require_transition_raises_with_missing(self, gate: StageGate) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            gate.require_transition({"stage": "Qualified", "budget": "10k"}, "RFQ")
        exc = exc_info.value
        assert exc.from_stage == "Qualified"
        assert exc.to_stage == "RFQ"
        assert exc.missing_fields == ["business_value", "decision_maker_level"]
        assert "business_value, decision_maker_level" in str(exc)

    def test_require_transition_forward_only(self, gate: StageGate, make_record) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            gate.require_transition(make_record("Lead"), "Offered")
        assert exc_info.value.missing_fields == []
        assert exc_info.value.reason == FORWARD_ONLY_MESSAGE

    def test_require_transition_passes(self, gate: StageGate, make_record) -> None:
        gate.require_transition(make_record("Offered"), "Dropped")

    def test_apply_returns_copy(self, gate: StageGate, make_record) -> None:
        record = make_record("Qualified")
        moved = gate.apply_transition(record, DealStage.RFQ)
        assert moved["stage"] == "RFQ"
        assert record["stage"] == "Qualified"
        assert moved["budget"] == record["budget"]

    def test_apply_backward_keeps_fields(self, gate: StageGate, make_record) -> None:
        moved = gate.apply_transition(make_record("Offered"), "Lead")
        assert moved["stage"] == "Lead"
        assert moved["total_contract_value"] == 250000


# ── available_targets ───────────────────────────────────────────────────────


class TestAvailableTargets:
    """Tests for StageGate.available_targets."""

    def test_complete_lead(self, gate: StageGate, make_record) -> None:
        assert gate.available_targets(make_record("Lead")) == [DealStage.DISCUSSIONS]

    def test_incomplete_lead(self, gate: StageGate) -> None:
        assert gate.available_targets({"stage": "Lead"}) == []

    def test_complete_offered(self, gate: StageGate, make_record) -> None:
        assert gate.available_targets(make_record("Offered")) == [
            DealStage.LEAD,
            DealStage.DISCUSSIONS,
            DealStage.QUALIFIED,
            DealStage.RFQ,
            DealStage.WON,
            DealStage.LOST,
            DealStage.DROPPED,
        ]

    def test_terminal_offers_backward_including_earlier_terminals(self, gate: StageGate) -> None:
        assert gate.available_targets({"stage": "Dropped"}) == LINEAR_STAGES + [
            DealStage.WON,
            DealStage.LOST,
        ]
        assert gate.available_targets({"stage": "Lost"}) == LINEAR_STAGES + [DealStage.WON]
        assert gate.available_targets({"stage": "Won"}) == LINEAR_STAGES

    def test_unknown_stage_offers_nothing(self, gate: StageGate) -> None:
        assert gate.available_targets({"stage": "??"}) == []
