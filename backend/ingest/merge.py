"""
Event merge engine.

Collapses provider noise into one canonical event log per match:
- the same logical event re-sent with small differences ("45" vs "45'",
  accents in the player name, minute off by one for goals/cards) is kept once
- a later, richer copy (player filled in, full name over initials) replaces
  the poorer one and never the other way round
- the log is capped, but goals are never trimmed away

Provider event ids change between polls and are deliberately ignored.
The engine is pure: same inputs, same output, no I/O.
"""
from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from typing import Iterable, Optional

from shared.models.domain import MatchEvent
from shared.models.enums import BUCKETED_EVENT_KINDS, EventKind
from shared.utils.minutes import bucket_minute, normalize_minute, sort_minute

DEFAULT_KEEP_LAST = 30

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def normalize_event_type(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def normalize_side(value: Optional[str]) -> str:
    """'h'/'home'/'host' -> 'h', 'a'/'away' -> 'a'; anything else passes through lowercased."""
    side = (value or "").strip().lower()
    if side.startswith("h"):
        return "h"
    if side.startswith("a"):
        return "a"
    return side


def _has_side(value: Optional[str]) -> bool:
    return normalize_side(value) in ("h", "a")


def normalize_player(value: Optional[str]) -> str:
    """Accent-, case- and punctuation-insensitive player key ("V. Gyökeres" == "V Gyokeres")."""
    raw = (value or "").strip()
    if not raw:
        return ""
    decomposed = unicodedata.normalize("NFD", raw)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return "".join(ch for ch in stripped.lower() if ch.isascii() and ch.isalnum())


def dedup_minute(event: MatchEvent) -> int:
    """Minute component of the identity key; goals and cards share 2-minute windows."""
    order = bucket_minute(event.time)
    if normalize_event_type(event.event) in BUCKETED_EVENT_KINDS:
        return (order // 100) // 2 if order >= 0 else -1
    return order


def identity_keys(match_key: str, event: MatchEvent) -> tuple[str, str]:
    """
    (coarse, fine) identity keys.

    coarse = match|TYPE|m:<minute bucket>[|s:<side>]
    fine   = coarse + |p:<player>, or coarse itself when no player is known
    """
    side = normalize_side(event.home_away)
    side_part = f"|s:{side}" if side in ("h", "a") else ""
    coarse = f"{match_key}|{normalize_event_type(event.event)}|m:{dedup_minute(event)}{side_part}"
    player = normalize_player(event.player)
    fine = f"{coarse}|p:{player}" if player else coarse
    return coarse, fine


def _ts(event: MatchEvent) -> datetime:
    ts = event.ts or _EPOCH
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def is_better(new: MatchEvent, old: MatchEvent) -> bool:
    """True when ``new`` carries more information than ``old``."""
    new_player = (new.player or "").strip()
    old_player = (old.player or "").strip()
    if bool(new_player) != bool(old_player):
        return bool(new_player)
    if new_player and len(new_player) != len(old_player):
        return len(new_player) > len(old_player)

    new_side, old_side = _has_side(new.home_away), _has_side(old.home_away)
    if new_side != old_side:
        return new_side

    new_time = bool(normalize_minute(new.time))
    old_time = bool(normalize_minute(old.time))
    if new_time != old_time:
        return new_time

    return _ts(new) > _ts(old)


def order_key(event: MatchEvent) -> tuple[int, datetime]:
    return sort_minute(event.time), _ts(event)


def _is_goal(event: MatchEvent) -> bool:
    return normalize_event_type(event.event) == EventKind.GOAL.value


def cap_events(ordered: list[MatchEvent], keep_last: int) -> list[MatchEvent]:
    """
    Trim a time-ordered log to ``keep_last`` entries.

    Every goal survives, even past the cap; the remaining room goes to the
    most recent non-goal events.
    """
    goals = [e for e in ordered if _is_goal(e)]
    others = [e for e in ordered if not _is_goal(e)]
    room = max(keep_last - len(goals), 0)
    kept = goals + (others[-room:] if room else [])
    return sorted(kept, key=order_key)


class EventMerger:
    """Merges freshly fetched events into one match's canonical log."""

    def __init__(self, match_key: str, keep_last: int = DEFAULT_KEEP_LAST) -> None:
        self.match_key = match_key
        self.keep_last = keep_last

    def merge(
        self, current: Iterable[MatchEvent], incoming: Iterable[MatchEvent]
    ) -> list[MatchEvent]:
        """
        Produce the new canonical log from ``current`` plus ``incoming``.

        Existing events are visited first so an incoming copy competes with
        them rather than the other way round. A fine key falls back to the
        coarse key when a player-less entry already sits there, which lets the
        enriched copy overwrite the placeholder instead of duplicating it.

        An empty ``incoming`` returns ``current`` as is, without re-keying.
        """
        current = list(current)
        incoming = list(incoming)
        if not incoming:
            return current

        merged: dict[str, MatchEvent] = {}
        for event in [*current, *incoming]:
            coarse, fine = identity_keys(self.match_key, event)
            key = coarse if fine != coarse and coarse in merged else fine
            existing = merged.get(key)
            if existing is None or is_better(event, existing):
                merged[key] = event

        ordered = sorted(merged.values(), key=order_key)
        return cap_events(ordered, self.keep_last)
