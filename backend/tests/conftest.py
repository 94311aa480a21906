"""
Shared fixtures: settings, an in-memory stand-in for the RedisManager helper
surface, a recording publisher and model builders.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.models.domain import Competition, MatchEvent, MatchState, Scores, Team

from ingest.service import MatchService
from ingest.store import KeySets, MatchStateStore

TODAY = date(2026, 10, 19)
BASE_TS = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


class FakeRedisManager:
    """Dict-backed RedisManager; TTLs are recorded, never enforced."""

    def __init__(self) -> None:
        self.states: dict[str, str] = {}
        self.state_ttls: dict[str, int] = {}
        self.live_keys: set[str] = set()
        self.live_ttl: Optional[int] = None
        self.board_keys: list[str] = []
        self.seen: dict[str, set[str]] = {}
        self.quota: dict[tuple[str, str], int] = {}
        self.quota_ttls: dict[tuple[str, str], int] = {}
        self.standings: dict[int, str] = {}

    async def get_match_state(self, match_key: str) -> Optional[str]:
        return self.states.get(match_key)

    async def get_match_states(self, match_keys: list[str]) -> list[Optional[str]]:
        return [self.states.get(k) for k in match_keys]

    async def set_match_state(self, match_key: str, data: str, ttl_s: int) -> None:
        self.states[match_key] = data
        self.state_ttls[match_key] = ttl_s

    async def get_live_keys(self) -> set[str]:
        return set(self.live_keys)

    async def replace_live_keys(self, match_keys: Iterable[str], ttl_s: int) -> None:
        self.live_keys = {k for k in match_keys if k}
        self.live_ttl = ttl_s if self.live_keys else None

    async def get_board_keys(self) -> list[str]:
        return list(self.board_keys)

    async def replace_board_keys(self, match_keys: Iterable[str]) -> None:
        self.board_keys = list(dict.fromkeys(k for k in match_keys if k and k.strip()))

    async def mark_event_seen(self, match_key: str, stable_id: str, ttl_s: int) -> bool:
        seen = self.seen.setdefault(match_key, set())
        if stable_id in seen:
            return False
        seen.add(stable_id)
        return True

    async def consume_daily_quota(self, provider: str, day: str, limit: int, ttl_s: int) -> int:
        key = (provider, day)
        current = self.quota.get(key, 0)
        if current >= limit:
            return -1
        self.quota[key] = current + 1
        if current == 0:
            self.quota_ttls[key] = ttl_s
        return current + 1

    async def get_quota_usage(self, provider: str, day: str) -> int:
        return self.quota.get((provider, day), 0)

    async def get_standings(self, competition_id: int) -> Optional[str]:
        return self.standings.get(competition_id)

    async def set_standings(self, competition_id: int, payload: str, ttl_s: int) -> None:
        self.standings[competition_id] = payload

    async def delete_standings(self, competition_id: int) -> None:
        self.standings.pop(competition_id, None)


class RecordingPublisher:
    """Publisher stand-in that remembers every (topic, event, payload)."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str, Any]] = []

    def publish(self, topic: str, event: str, payload: Any) -> int:
        self.published.append((topic, event, payload))
        return 1

    def topics(self) -> list[str]:
        return [t for t, _, _ in self.published]


# ── Builders ────────────────────────────────────────────────────────────
def make_event(
    event: str = "GOAL",
    time: Optional[str] = "10",
    player: Optional[str] = "",
    home_away: Optional[str] = "h",
    seconds: int = 0,
    event_id: Optional[str] = None,
) -> MatchEvent:
    return MatchEvent(
        id=event_id,
        event=event,
        time=time,
        player=player,
        home_away=home_away,
        ts=BASE_TS + timedelta(seconds=seconds),
    )


def make_state(
    id: Optional[int] = None,
    fixture_id: Optional[int] = None,
    status: str = "IN PLAY",
    time: Optional[str] = "10",
    competition_id: int = 2,
    competition_name: str = "Premier League",
    home_id: int = 10,
    away_id: int = 20,
    scheduled: Optional[str] = "19:30",
    score: str = "0 - 0",
    events: Optional[list[MatchEvent]] = None,
    fixture_date: Optional[str] = None,
) -> MatchState:
    return MatchState(
        id=id,
        fixture_id=fixture_id,
        fixture_date=fixture_date,
        scheduled=scheduled,
        status=status,
        time=time,
        competition=Competition(id=competition_id, name=competition_name),
        home=Team(id=home_id, name=f"Home {home_id}"),
        away=Team(id=away_id, name=f"Away {away_id}"),
        scores=Scores(score=score),
        last_events=events or [],
    )


# ── Fixtures ────────────────────────────────────────────────────────────
@pytest.fixture
def settings() -> Settings:
    return Settings(
        provider_key="key",
        provider_secret="secret",
        provider_competition_ids="2,3",
        metrics_enabled=False,
    )


@pytest.fixture
def fake_redis() -> FakeRedisManager:
    return FakeRedisManager()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def standings() -> MagicMock:
    svc = MagicMock()
    svc.invalidate_competition = AsyncMock()
    return svc


@pytest.fixture
def store(fake_redis: FakeRedisManager, settings: Settings) -> MatchStateStore:
    return MatchStateStore(fake_redis, settings)  # type: ignore[arg-type]


@pytest.fixture
def match_service(
    fake_redis: FakeRedisManager,
    publisher: RecordingPublisher,
    standings: MagicMock,
    settings: Settings,
) -> MatchService:
    return MatchService(
        MatchStateStore(fake_redis, settings),  # type: ignore[arg-type]
        KeySets(fake_redis, settings),  # type: ignore[arg-type]
        publisher,
        standings,
        settings,
        today=lambda: TODAY,
    )
