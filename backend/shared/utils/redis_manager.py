"""
Redis connection manager for livescores.
Provides the async connection pool and typed helpers over the key namespaces
the pollers and the API share.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
MATCH_STATE_KEY = "match:state:{match_key}"
LIVE_KEYS_KEY = "matches:live"
BOARD_KEYS_KEY = "livescores:board-keys"
SEEN_EVENTS_KEY = "match:events:seen:{match_key}"
QUOTA_KEY = "quota:provider:{provider}:day:{day}"
STANDINGS_KEY = "livescore:standings:{competition_id}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages the async Redis connection pool and provides typed helpers."""

    # Lua script: refuse once the pre-increment value reached the limit,
    # otherwise increment and stamp the TTL on the first hit of the day.
    _CONSUME_QUOTA_SCRIPT = """
local current = tonumber(redis.call("get", KEYS[1]) or "0")
if current >= tonumber(ARGV[1]) then
    return -1
end
local next = redis.call("incr", KEYS[1])
if next == 1 then
    redis.call("expire", KEYS[1], ARGV[2])
end
return next
"""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Match state ─────────────────────────────────────────────────────
    async def get_match_state(self, match_key: str) -> Optional[str]:
        return await self.client.get(_fmt(MATCH_STATE_KEY, match_key=match_key))

    async def get_match_states(self, match_keys: list[str]) -> list[Optional[str]]:
        """Bulk read, one MGET; result order follows ``match_keys``."""
        if not match_keys:
            return []
        keys = [_fmt(MATCH_STATE_KEY, match_key=k) for k in match_keys]
        return await self.client.mget(keys)

    async def set_match_state(self, match_key: str, data: str, ttl_s: int) -> None:
        await self.client.set(_fmt(MATCH_STATE_KEY, match_key=match_key), data, ex=ttl_s)

    # ── Live key set ────────────────────────────────────────────────────
    async def get_live_keys(self) -> set[str]:
        return set(await self.client.smembers(LIVE_KEYS_KEY))

    async def replace_live_keys(self, match_keys: Iterable[str], ttl_s: int) -> None:
        keys = [k for k in match_keys if k]
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(LIVE_KEYS_KEY)
        if keys:
            pipe.sadd(LIVE_KEYS_KEY, *keys)
            pipe.expire(LIVE_KEYS_KEY, ttl_s)
        await pipe.execute()

    # ── Board key list ──────────────────────────────────────────────────
    async def get_board_keys(self) -> list[str]:
        return list(await self.client.lrange(BOARD_KEYS_KEY, 0, -1))

    async def replace_board_keys(self, match_keys: Iterable[str]) -> None:
        """Replace the board list with the distinct non-blank keys, order kept."""
        keys = list(dict.fromkeys(k for k in match_keys if k and k.strip()))
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(BOARD_KEYS_KEY)
        if keys:
            pipe.rpush(BOARD_KEYS_KEY, *keys)
        await pipe.execute()

    # ── Seen-event markers ──────────────────────────────────────────────
    async def mark_event_seen(self, match_key: str, stable_id: str, ttl_s: int) -> bool:
        """Add ``stable_id`` to the match's seen set. True when it was not there yet."""
        key = _fmt(SEEN_EVENTS_KEY, match_key=match_key)
        added = await self.client.sadd(key, stable_id)
        if added:
            await self.client.expire(key, ttl_s)
            return True
        return False

    # ── Daily quota ─────────────────────────────────────────────────────
    async def consume_daily_quota(self, provider: str, day: str, limit: int, ttl_s: int) -> int:
        """
        Atomically take one request from the provider's daily budget.

        Returns the post-increment count, or -1 when the budget was already
        spent (the counter is left untouched in that case).
        """
        key = _fmt(QUOTA_KEY, provider=provider, day=day)
        result = await self.client.eval(self._CONSUME_QUOTA_SCRIPT, 1, key, str(limit), str(ttl_s))
        return int(result)

    async def get_quota_usage(self, provider: str, day: str) -> int:
        val = await self.client.get(_fmt(QUOTA_KEY, provider=provider, day=day))
        return int(val) if val else 0

    # ── Standings cache ─────────────────────────────────────────────────
    async def get_standings(self, competition_id: int) -> Optional[str]:
        return await self.client.get(_fmt(STANDINGS_KEY, competition_id=competition_id))

    async def set_standings(self, competition_id: int, payload: str, ttl_s: int) -> None:
        await self.client.set(
            _fmt(STANDINGS_KEY, competition_id=competition_id), payload, ex=ttl_s
        )

    async def delete_standings(self, competition_id: int) -> None:
        await self.client.delete(_fmt(STANDINGS_KEY, competition_id=competition_id))
