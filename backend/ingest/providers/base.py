"""
Abstract base class for upstream score providers.
Defines the contract the pollers consume and owns daily quota accounting.
"""
from __future__ import annotations

import abc
from datetime import date, datetime, timezone
from typing import Any, Callable

from shared.config import Settings, get_settings
from shared.utils.errors import QuotaExceeded
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import QUOTA_REFUSALS
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class BaseProvider(abc.ABC):
    """
    Base class for providers.

    Every outbound request first takes one unit from a per-UTC-day counter
    kept in Redis, so the budget survives restarts and is shared between
    instances. A spent budget raises ``QuotaExceeded`` without sending the
    request.

    Fetch methods return the raw response body; parsing is left to callers so
    they can report payload-shape failures separately.
    """

    def __init__(
        self,
        name: str,
        http_client: ProviderHTTPClient,
        redis: RedisManager,
        settings: Settings | None = None,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self._settings = settings or get_settings()
        self._name = name
        self._http = http_client
        self._redis = redis
        self._quota_per_day = self._settings.provider_quota_per_day
        self._today = today

    @property
    def name(self) -> str:
        return self._name

    async def start(self) -> None:
        """Initialize the provider HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the provider HTTP client."""
        await self._http.close()

    # ── Quota ───────────────────────────────────────────────────────────
    async def consume_quota(self) -> int:
        """
        Take one request from today's budget.

        Returns:
            The number of requests used today, this one included.

        Raises:
            QuotaExceeded: The budget was already spent before this call.
        """
        used = await self._redis.consume_daily_quota(
            self._name,
            self._today().isoformat(),
            self._quota_per_day,
            self._settings.quota_counter_ttl_s,
        )
        if used < 0:
            QUOTA_REFUSALS.labels(provider=self._name).inc()
            logger.warning("quota_exceeded", provider=self._name, limit=self._quota_per_day)
            raise QuotaExceeded(self._name, self._quota_per_day, self._quota_per_day)
        return used

    async def quota_usage(self) -> int:
        return await self._redis.get_quota_usage(self._name, self._today().isoformat())

    async def _get(self, path: str, params: dict[str, Any], endpoint: str) -> str:
        await self.consume_quota()
        return await self._http.get_text(path, params=params, endpoint=endpoint)

    # ── Contract ────────────────────────────────────────────────────────
    @abc.abstractmethod
    async def fetch_fixtures_today(self, competition_id: int) -> str:
        """Today's (UTC) planned fixtures for one competition."""
        ...

    @abc.abstractmethod
    async def fetch_live_matches(self) -> str:
        """Current live and just-finished matches."""
        ...

    @abc.abstractmethod
    async def fetch_match_events(self, match_id: int) -> str:
        """Event list for one live match id."""
        ...

    @abc.abstractmethod
    async def fetch_competition_table(self, competition_id: int) -> str:
        """Standings table for one competition, passed through verbatim."""
        ...
