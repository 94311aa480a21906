"""
Redis-backed stores for canonical match records and the two key sets.

Records are written whole (no partial field updates) and expire passively,
with the retention window picked from the record's status.
"""
from __future__ import annotations

from typing import Iterable, Optional

from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.models.domain import MatchState
from shared.models.enums import MatchStatus
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


class MatchStateStore:
    """Typed get/put of ``MatchState`` records keyed by match key."""

    def __init__(self, redis: RedisManager, settings: Settings | None = None) -> None:
        self._redis = redis
        self._settings = settings or get_settings()

    def ttl_for(self, status: Optional[str]) -> int:
        if status == MatchStatus.NOT_STARTED.value:
            return self._settings.ttl_not_started_s
        if MatchStatus.is_live(status):
            return self._settings.ttl_live_s
        if MatchStatus.is_finished(status):
            return self._settings.ttl_finished_s
        return self._settings.ttl_unknown_s

    def _decode(self, match_key: str, raw: Optional[str]) -> Optional[MatchState]:
        if raw is None:
            return None
        try:
            return MatchState.model_validate_json(raw)
        except ValidationError as exc:
            # Unreadable record: treat as absent, the next upsert overwrites it.
            logger.warning("match_state_corrupt", match_key=match_key, error=str(exc))
            return None

    async def get(self, match_key: str) -> Optional[MatchState]:
        return self._decode(match_key, await self._redis.get_match_state(match_key))

    async def get_many(self, match_keys: list[str]) -> list[MatchState]:
        """Existing records for ``match_keys``, in order; missing keys are skipped."""
        raws = await self._redis.get_match_states(match_keys)
        states: list[MatchState] = []
        for key, raw in zip(match_keys, raws):
            state = self._decode(key, raw)
            if state is not None:
                states.append(state)
        return states

    async def put(self, state: MatchState) -> None:
        await self._redis.set_match_state(
            state.match_key,
            state.model_dump_json(),
            self.ttl_for(state.status),
        )


class KeySets:
    """
    The "live" set (matches eligible for event polling, short TTL refreshed by
    every reconciliation) and the ordered "board" list (everything displayable).
    """

    def __init__(self, redis: RedisManager, settings: Settings | None = None) -> None:
        self._redis = redis
        self._settings = settings or get_settings()

    async def live_keys(self) -> set[str]:
        return await self._redis.get_live_keys()

    async def replace_live_keys(self, match_keys: Iterable[str]) -> None:
        await self._redis.replace_live_keys(match_keys, self._settings.live_keys_ttl_s)

    async def board_keys(self) -> list[str]:
        return await self._redis.get_board_keys()

    async def replace_board_keys(self, match_keys: Iterable[str]) -> None:
        await self._redis.replace_board_keys(match_keys)
