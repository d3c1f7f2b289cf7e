"""Shared fixtures for the rule-engine and API tests.

Provides:
- A StageGate over the default definition table
- A ScheduleResolver pinned to 2024-06-15 08:30Z (10:30 in Paris)
- Complete deal records for every linear stage
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from src.crm.deals.gate import StageGate
from src.crm.meetings.scheduler import ScheduleResolver

FIXED_NOW = datetime(2024, 6, 15, 8, 30, tzinfo=timezone.utc)

# Values that satisfy every required field of the linear stages.
COMPLETE_FIELDS: dict[str, Any] = {
    # Lead
    "project_name": "Warehouse automation",
    "customer_name": "Acme Logistics",
    "lead_name": "Priya Shah",
    "lead_owner": "sales-emea",
    "probability": 40,
    # Discussions
    "expected_closing_date": "2024-09-30",
    "customer_need": "reduce picking cost",
    "customer_challenges": "manual inventory",
    "relationship_strength": "Medium",
    # Qualified
    "budget": "250k",
    "business_value": "High",
    "decision_maker_level": "Identified",
    # RFQ
    "is_recurring": False,
    "project_type": "Implementation",
    "duration": 12,
    "revenue": 250000,
    "start_date": "2024-10-01",
    "end_date": "2025-09-30",
    # Offered
    "total_contract_value": 250000,
    "currency_type": "EUR",
    "action_items": "send final pricing",
    "current_status": "awaiting signature",
}


def _make_record(stage: str, **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"deal_name": "Acme rollout", "stage": stage, **COMPLETE_FIELDS}
    record.update(overrides)
    return record


@pytest.fixture
def make_record():
    """Factory for a record in a stage with every linear required field filled in."""
    return _make_record


@pytest.fixture
def gate() -> StageGate:
    """StageGate over the default definition table."""
    return StageGate()


@pytest.fixture
def resolver() -> ScheduleResolver:
    """ScheduleResolver whose clock is fixed at FIXED_NOW."""
    return ScheduleResolver(clock=lambda: FIXED_NOW)
