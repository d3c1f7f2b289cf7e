"""Tests for metric labelling and request logging.

Tests cover:
- record_transition_check: stage labels limited to known stages
- route_template: mounted route path instead of the raw URL
- request logging and HTTP metrics through the full app
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY
from starlette.requests import Request
from structlog.testing import capture_logs

from src.crm.core.monitoring import record_transition_check, route_template
from src.crm.main import create_app


def _transition_count(from_stage: str, to_stage: str, outcome: str) -> float | None:
    return REGISTRY.get_sample_value(
        "stage_transition_checks_total",
        {"from_stage": from_stage, "to_stage": to_stage, "outcome": outcome},
    )


def _request_count(method: str, endpoint: str, status_code: str) -> float:
    value = REGISTRY.get_sample_value(
        "http_requests_total",
        {"method": method, "endpoint": endpoint, "status_code": status_code},
    )
    return value or 0.0


@pytest_asyncio.fixture
async def client():
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ── Transition Labels ────────────────────────────────────────────────────────


class TestTransitionLabels:
    def test_known_stages_keep_their_names(self) -> None:
        before = _transition_count("Offered", "Won", "allowed") or 0.0
        record_transition_check("Offered", "Won", True)
        assert _transition_count("Offered", "Won", "allowed") == before + 1

    def test_unrecognised_stages_collapse_to_unknown(self) -> None:
        before = _transition_count("unknown", "unknown", "blocked") or 0.0
        for i in range(5):
            record_transition_check(f"junk-{i}", f"x-{i}", False)
        assert _transition_count("unknown", "unknown", "blocked") == before + 5
        assert _transition_count("junk-0", "x-0", "blocked") is None

    def test_missing_stage_is_unknown(self) -> None:
        before = _transition_count("unknown", "Lead", "blocked") or 0.0
        record_transition_check(None, "Lead", False)
        assert _transition_count("unknown", "Lead", "blocked") == before + 1


# ── Route Template ───────────────────────────────────────────────────────────


class TestRouteTemplate:
    def test_unmatched(self) -> None:
        request = Request({"type": "http", "root_path": ""})
        assert route_template(request) == "unmatched"

    def test_full_route_path(self) -> None:
        route = SimpleNamespace(path="/v1/deals/transitions/check")
        request = Request({"type": "http", "root_path": "", "route": route})
        assert route_template(request) == "/v1/deals/transitions/check"

    def test_mount_prefix_is_prepended(self) -> None:
        route = SimpleNamespace(path="/deals/transitions/check")
        request = Request(
            {
                "type": "http",
                "root_path": "/v1",
                "path": "/v1/deals/transitions/check",
                "route": route,
            }
        )
        assert route_template(request) == "/v1/deals/transitions/check"

    def test_prefix_recovered_from_request_path(self) -> None:
        route = SimpleNamespace(path="/deals/stages/{stage}/fields")
        request = Request(
            {
                "type": "http",
                "root_path": "",
                "path": "/v1/deals/stages/Lost/fields",
                "path_params": {"stage": "Lost"},
                "route": route,
            }
        )
        assert route_template(request) == "/v1/deals/stages/{stage}/fields"

    def test_prefix_not_doubled(self) -> None:
        route = SimpleNamespace(path="/v1/deals/stages")
        request = Request({"type": "http", "root_path": "/v1", "route": route})
        assert route_template(request) == "/v1/deals/stages"


# ── Through The App ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_transition_check_with_junk_stages_adds_no_series(client):
    before = _transition_count("unknown", "unknown", "blocked") or 0.0
    for i in range(10):
        response = await client.post(
            "/v1/deals/transitions/check",
            json={"record": {"stage": f"junk-{i}"}, "target": f"x-{i}"},
        )
        assert response.status_code == 200
    assert _transition_count("unknown", "unknown", "blocked") == before + 10
    assert _transition_count("junk-3", "x-3", "blocked") is None


@pytest.mark.asyncio
async def test_http_metrics_use_route_template(client):
    endpoint = "/v1/deals/stages/{stage}/fields"
    before = _request_count("GET", endpoint, "404")
    await client.get("/v1/deals/stages/Whatever/fields")
    await client.get("/v1/deals/stages/Other/fields")
    assert _request_count("GET", endpoint, "404") == before + 2
    assert (
        REGISTRY.get_sample_value(
            "http_requests_total",
            {"method": "GET", "endpoint": "/v1/deals/stages/Whatever/fields", "status_code": "404"},
        )
        is None
    )


@pytest.mark.asyncio
async def test_unmatched_paths_share_one_series(client):
    before = _request_count("GET", "unmatched", "404")
    await client.get("/no/such/path-1")
    await client.get("/no/such/path-2")
    assert _request_count("GET", "unmatched", "404") == before + 2


@pytest.mark.asyncio
async def test_request_log_includes_mounted_route(client):
    with capture_logs() as logs:
        response = await client.post(
            "/v1/deals/transitions/check",
            json={"record": {"stage": "Lead"}, "target": "Discussions"},
        )
    assert response.status_code == 200
    completed = [entry for entry in logs if entry["event"] == "request_completed"]
    assert len(completed) == 1
    assert completed[0]["route"] == "/v1/deals/transitions/check"
    assert completed[0]["status_code"] == 200
