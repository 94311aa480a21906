"""
live-score-api.com provider connector.
Soccer only: fixtures, live matches, match events and competition tables.
Authenticates with key/secret query parameters.
"""
from __future__ import annotations

from typing import Any

from shared.config import Settings, get_settings
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.redis_manager import RedisManager

from ingest.providers.base import BaseProvider

FIXTURES_PATH = "/api-client/fixtures/list.json"
LIVE_MATCHES_PATH = "/api-client/matches/live.json"
EVENTS_PATH = "/api-client/scores/events.json"
TABLE_PATH = "/api-client/leagues/table.json"


class LiveScoreProvider(BaseProvider):
    """live-score-api.com client behind the daily quota gate."""

    def __init__(
        self,
        redis: RedisManager,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
        **kwargs: Any,
    ) -> None:
        settings = settings or get_settings()
        http_client = http_client or ProviderHTTPClient(
            provider_name=settings.provider_name,
            base_url=settings.provider_base_url,
            timeout_s=settings.provider_request_timeout_s,
        )
        super().__init__(
            name=settings.provider_name,
            http_client=http_client,
            redis=redis,
            settings=settings,
            **kwargs,
        )

    def _auth(self, **params: Any) -> dict[str, Any]:
        return {"key": self._settings.provider_key, "secret": self._settings.provider_secret, **params}

    async def fetch_fixtures_today(self, competition_id: int) -> str:
        params = self._auth(competition_id=competition_id, date=self._today().isoformat())
        return await self._get(FIXTURES_PATH, params, endpoint="fixtures")

    async def fetch_live_matches(self) -> str:
        params = self._auth()
        if self._settings.provider_competition_ids.strip():
            params["competition_id"] = ",".join(str(c) for c in self._settings.competition_ids)
        return await self._get(LIVE_MATCHES_PATH, params, endpoint="live")

    async def fetch_match_events(self, match_id: int) -> str:
        return await self._get(EVENTS_PATH, self._auth(id=match_id), endpoint="events")

    async def fetch_competition_table(self, competition_id: int) -> str:
        return await self._get(TABLE_PATH, self._auth(competition_id=competition_id), endpoint="table")
