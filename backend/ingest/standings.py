"""
Competition standings cache.
Cache-aside over the provider's table endpoint; entries live five minutes and
are dropped early when reconciliation sees a score change.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Optional

from shared.config import Settings, get_settings
from shared.utils.circuit_breaker import ResilienceController
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

if TYPE_CHECKING:
    from ingest.providers.base import BaseProvider

logger = get_logger(__name__)


class StandingsService:
    """Serves competition tables as raw provider JSON."""

    def __init__(
        self,
        redis: RedisManager,
        provider: "BaseProvider",
        breaker: ResilienceController,
        settings: Settings | None = None,
    ) -> None:
        self._redis = redis
        self._provider = provider
        self._breaker = breaker
        self._settings = settings or get_settings()

    async def get_competition_table(self, competition_id: int) -> Optional[str]:
        """
        Cached table JSON for ``competition_id``.

        Returns None when nothing is cached and the provider could not be
        asked (controller open, call failed, or an unparseable body).
        """
        cached = await self._redis.get_standings(competition_id)
        if cached and cached.strip():
            return cached

        payload = await self._breaker.call(self._provider.fetch_competition_table, competition_id)
        if payload is None:
            return None
        try:
            json.loads(payload)
        except json.JSONDecodeError as exc:
            self._breaker.report_payload_error(f"standings: {exc}")
            return None

        await self._redis.set_standings(competition_id, payload, self._settings.standings_ttl_s)
        logger.debug("standings_cached", competition_id=competition_id)
        return payload

    async def invalidate_competition(self, competition_id: int) -> None:
        await self._redis.delete_standings(competition_id)
        logger.debug("standings_invalidated", competition_id=competition_id)
