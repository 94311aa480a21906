"""API route tests. Lifespan is disabled; services are swapped in through dependency overrides."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import make_state

from api import dependencies
from api.app import create_app
from api.dependencies import get_breaker, get_hub, get_match_service, get_standings_service
from api.routes.stream import _sse
from api.stream.hub import HEARTBEAT_FRAME, FanoutHub
from shared.config import Settings
from shared.models.enums import FailureKind
from shared.utils.circuit_breaker import ResilienceController


@pytest.fixture
def app() -> FastAPI:
    return create_app(use_lifespan=False)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Test client with lifespan disabled so routes run without Redis or the provider."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def breaker(settings: Settings) -> ResilienceController:
    return ResilienceController("livescore", settings)


def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("service") == "api"


def test_health_returns_json(client: TestClient) -> None:
    r = client.get("/health")
    assert r.headers.get("content-type", "").startswith("application/json")


def test_request_id_is_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_board_snapshot(app: FastAPI, client: TestClient) -> None:
    matches = MagicMock()
    matches.get_board_matches = AsyncMock(return_value=[make_state(id=1), make_state(fixture_id=2)])
    app.dependency_overrides[get_match_service] = lambda: matches

    r = client.get("/api/stream/board")

    assert r.status_code == 200
    assert [m["match_key"] for m in r.json()] == ["ls-1", "ls-2"]


def test_unhandled_error_returns_500(app: FastAPI) -> None:
    matches = MagicMock()
    matches.get_board_matches = AsyncMock(side_effect=RuntimeError("boom"))
    app.dependency_overrides[get_match_service] = lambda: matches

    with TestClient(app, raise_server_exceptions=False) as c:
        r = c.get("/api/stream/board")

    assert r.status_code == 500
    assert r.json()["error"] == "internal_server_error"


def test_match_stream_rejects_unknown_key(app: FastAPI, client: TestClient, settings: Settings) -> None:
    app.dependency_overrides[get_hub] = lambda: FanoutHub(settings)
    assert client.get("/api/stream/matches/12345").status_code == 404


def test_competition_table_passthrough(app: FastAPI, client: TestClient, breaker: ResilienceController) -> None:
    body = json.dumps({"success": True, "data": {"table": [{"name": "Arsenal", "points": "21"}]}})
    standings = MagicMock()
    standings.get_competition_table = AsyncMock(return_value=body)
    app.dependency_overrides[get_standings_service] = lambda: standings
    app.dependency_overrides[get_breaker] = lambda: breaker

    r = client.get("/api/stream/competitions/2/table")

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/json")
    assert r.text == body
    standings.get_competition_table.assert_awaited_once_with(2)


@pytest.mark.parametrize("tripped, status", [(True, 503), (False, 502)])
def test_competition_table_unavailable(
    app: FastAPI, client: TestClient, breaker: ResilienceController, tripped: bool, status: int
) -> None:
    if tripped:
        breaker.trip(FailureKind.QUOTA_EXCEEDED)
    standings = MagicMock()
    standings.get_competition_table = AsyncMock(return_value=None)
    app.dependency_overrides[get_standings_service] = lambda: standings
    app.dependency_overrides[get_breaker] = lambda: breaker

    assert client.get("/api/stream/competitions/2/table").status_code == status


def test_status_reports_breaker_and_quota(
    client: TestClient, breaker: ResilienceController, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    breaker.trip(FailureKind.UNAUTHORIZED)
    provider = MagicMock()
    provider.quota_usage = AsyncMock(return_value=321)
    matches = MagicMock()
    matches.get_live_match_keys = AsyncMock(return_value=["ls-1", "ls-2"])
    matches.get_board_match_keys = AsyncMock(return_value=["ls-1", "ls-2", "ls-3"])
    hub = FanoutHub(settings)
    hub.subscribe("live-board")

    monkeypatch.setattr(dependencies, "_breaker", breaker)
    monkeypatch.setattr(dependencies, "_provider", provider)
    monkeypatch.setattr(dependencies, "_matches", matches)
    monkeypatch.setattr(dependencies, "_hub", hub)

    data = client.get("/v1/status").json()

    assert data["status"] == "degraded"
    assert data["provider"]["reason"] == "unauthorized"
    assert data["quota"]["used"] == 321
    assert data["live_matches"] == 2
    assert data["board_matches"] == 3
    assert data["stream_subscribers"] == 1


@pytest.mark.asyncio
async def test_stream_subscribes_only_while_body_is_iterated() -> None:
    hub = FanoutHub(Settings(stream_heartbeat_s=0.01, metrics_enabled=False))
    response = _sse(hub, "ls-1")
    assert hub.subscribers("ls-1") == 0

    body = response.body_iterator
    assert await body.__anext__() == HEARTBEAT_FRAME
    assert hub.subscribers("ls-1") == 1

    await body.aclose()
    assert hub.subscribers("ls-1") == 0


def test_unstarted_stream_leaves_no_subscriber(settings: Settings) -> None:
    hub = FanoutHub(settings)
    _sse(hub, "live-board")
    assert hub.subscriber_count == 0
