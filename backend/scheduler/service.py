"""
Scheduler service for livescores.
Drives the poll ticks as independent background tasks:
- live/finished reconciliation every ``live_poll_interval_s``
- event rotation every ``events_poll_interval_s``
- fixtures of the day once per day at the configured UTC time

Each ticker waits for its own tick to finish before scheduling the next one
(fixed delay), so a ticker never overlaps itself; different tickers may.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger, tick_context
from shared.utils.metrics import TICK_DURATION

from scheduler.pollers import FixturesPoller, LivePoller

logger = get_logger(__name__)

Tick = Callable[[], Awaitable[object]]


def seconds_until(hour: int, minute: int, now: Optional[datetime] = None) -> float:
    """Seconds from ``now`` (UTC) to the next occurrence of hour:minute UTC."""
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class SchedulerService:
    """
    Owns the poll tickers' lifecycle.

    ``start()`` spawns the tickers (seeding first when configured);
    ``stop()`` signals shutdown and waits for them to exit.
    """

    def __init__(
        self,
        live_poller: LivePoller,
        fixtures_poller: FixturesPoller,
        settings: Settings | None = None,
    ) -> None:
        self._live = live_poller
        self._fixtures = fixtures_poller
        self._settings = settings or get_settings()
        self._tasks: list[asyncio.Task[None]] = []
        self._shutdown = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def run_tick(self, name: str, tick: Tick) -> bool:
        """Run one tick; failures are logged and swallowed so the ticker keeps going."""
        start = time.perf_counter()
        with tick_context(name):
            try:
                await tick()
                return True
            except Exception as exc:
                logger.exception("tick_failed", error=str(exc))
                return False
            finally:
                TICK_DURATION.labels(tick=name).observe(time.perf_counter() - start)

    async def _sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, returning early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _every(self, name: str, interval_s: float, tick: Tick, delay_s: float = 0.0) -> None:
        logger.info("ticker_started", tick=name, interval_s=interval_s)
        if delay_s:
            await self._sleep(delay_s)
        while not self._shutdown.is_set():
            await self.run_tick(name, tick)
            await self._sleep(interval_s)
        logger.info("ticker_stopped", tick=name)

    async def _daily_fixtures(self) -> None:
        hour = self._settings.fixtures_poll_hour_utc
        minute = self._settings.fixtures_poll_minute_utc
        while not self._shutdown.is_set():
            await self._sleep(seconds_until(hour, minute))
            if self._shutdown.is_set():
                break
            await self.run_tick("fixtures", self._fixtures.poll_fixtures_today)

    async def seed(self) -> None:
        """Load today's fixtures, then reconcile live matches once."""
        await self.run_tick("fixtures", self._fixtures.poll_fixtures_today)
        await self.run_tick("live", self._live.poll_live_matches)
        logger.info("startup_seed_complete")

    async def _live_loop(self) -> None:
        delay = 0.0
        if self._settings.seed_on_start:
            await self.seed()
            delay = self._settings.live_poll_interval_s
        await self._every(
            "live", self._settings.live_poll_interval_s, self._live.poll_live_matches, delay_s=delay
        )

    async def start(self) -> None:
        """Spawn the tickers; the startup seed runs inside the live ticker, off the caller's path."""
        self._shutdown.clear()
        self._tasks = [
            asyncio.create_task(self._live_loop()),
            asyncio.create_task(
                self._every("events", self._settings.events_poll_interval_s, self._live.poll_events)
            ),
            asyncio.create_task(self._daily_fixtures()),
        ]
        logger.info("scheduler_started", tickers=len(self._tasks))

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def stop(self) -> None:
        self.request_shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scheduler_stopped")
