"""
Event rotation engine.
Picks the bounded slice of live matches whose events are fetched on a tick,
so that every live match is visited roughly once per full rotation while the
per-tick request count stays capped.
"""
from __future__ import annotations

import itertools
import math
from typing import Sequence, TypeVar

from shared.config import Settings, get_settings

T = TypeVar("T")


class EventRotation:
    """
    Rotating window over the live-match list.

    The cursor is an ``itertools.count``: ``next()`` on it is a single atomic
    step, so concurrent ticks never lose an increment.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._cursor = itertools.count()

    def per_tick_cap(self, live_count: int) -> int:
        """Enough matches to cover the roster in ``events_full_rotation_ticks`` ticks, clamped."""
        if live_count <= 0:
            return 0
        wanted = math.ceil(live_count / self._settings.events_full_rotation_ticks)
        cap = max(self._settings.events_per_tick_min, min(self._settings.events_per_tick_max, wanted))
        return min(live_count, cap)

    def next_slice(self, items: Sequence[T]) -> list[T]:
        """Advance the cursor and return this tick's window, wrapping past the end."""
        count = len(items)
        if count == 0:
            return []
        cap = self.per_tick_cap(count)
        tick = next(self._cursor)
        start = (tick * cap) % count
        end = start + cap
        if end <= count:
            return list(items[start:end])
        return list(items[start:]) + list(items[: end - count])
