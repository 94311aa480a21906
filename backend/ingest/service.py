"""
Match reconciliation service.

Owns the canonical per-match records:
- identity normalization (live records converge on their fixture key)
- upsert from provider snapshots, with first-population of the event log
- freezing records at FINISHED and creating UNKNOWN placeholders
- event log append/replace through the merge engine
- the de-duplicated board view and its publication

Every write replaces the whole record and is followed by a publish on the
match's own topic.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Protocol

from shared.config import Settings, get_settings
from shared.models.domain import MATCH_KEY_PREFIX, MatchEvent, MatchState
from shared.models.enums import MatchStatus, StreamEvent, Topic
from shared.utils.logging import get_logger
from shared.utils.metrics import BOARD_MATCHES
from shared.utils.minutes import minute_order

from ingest.merge import EventMerger
from ingest.standings import StandingsService
from ingest.store import KeySets, MatchStateStore

logger = get_logger(__name__)

FINISHED_TIME_MARKER = "FT"


class Publisher(Protocol):
    def publish(self, topic: str, event: str, payload: Any) -> int: ...


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def match_id_from_key(match_key: str) -> Optional[int]:
    """Numeric id carried by an ``ls-<id>`` key, else None."""
    if not match_key.startswith(MATCH_KEY_PREFIX):
        return None
    suffix = match_key[len(MATCH_KEY_PREFIX):]
    return int(suffix) if suffix.isdigit() else None


def identity_key(state: MatchState) -> str:
    """Board identity: the fixture id when known, else the (competition, teams, kickoff) tuple."""
    if state.fixture_id is not None:
        return f"fx:{state.fixture_id}"
    comp = state.competition.id if state.competition and state.competition.id is not None else "?"
    home = state.home.id if state.home and state.home.id is not None else "?"
    away = state.away.id if state.away and state.away.id is not None else "?"
    kickoff = (state.scheduled or "").strip()
    return f"cmp:{comp}|h:{home}|a:{away}|t:{kickoff}"


def choose_more_advanced(first: MatchState, second: MatchState) -> MatchState:
    """Pick the record that looks further along; ties keep ``first``."""
    first_min = minute_order(first.time)
    second_min = minute_order(second.time)
    first_min = -1 if first_min is None else first_min
    second_min = -1 if second_min is None else second_min
    if first_min != second_min:
        return first if first_min > second_min else second

    if len(first.last_events) != len(second.last_events):
        return first if len(first.last_events) > len(second.last_events) else second

    first_has_id, second_has_id = first.id is not None, second.id is not None
    if first_has_id != second_has_id:
        return first if first_has_id else second

    return first


def _same_fixture(candidate: MatchState, comp_id: int, home_id: int, away_id: int, kickoff: str) -> bool:
    return (
        candidate.fixture_id is not None
        and candidate.competition is not None
        and candidate.competition.id == comp_id
        and candidate.home is not None
        and candidate.home.id == home_id
        and candidate.away is not None
        and candidate.away.id == away_id
        and (candidate.scheduled or "").strip() == kickoff
    )


class MatchService:
    """
    Reconciles provider snapshots into canonical ``MatchState`` records.

    Args:
        store: Typed match record store.
        key_sets: Live set and board list.
        publisher: Fanout hub; receives per-match ``state`` and board ``live`` events.
        standings: Standings cache, invalidated when a match's score changes.
        settings: Retention cap and TTLs.
        today: UTC date source used to drop stale fixtures from the board.
    """

    def __init__(
        self,
        store: MatchStateStore,
        key_sets: KeySets,
        publisher: Publisher,
        standings: Optional[StandingsService] = None,
        settings: Settings | None = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._store = store
        self._keys = key_sets
        self._publisher = publisher
        self._standings = standings
        self._settings = settings or get_settings()
        self._today = today

    # ── Identity ────────────────────────────────────────────────────────
    async def board_snapshot(self) -> list[MatchState]:
        """Stored records for the current board keys, read in one round trip."""
        return await self._store.get_many(await self._keys.board_keys())

    async def normalize_for_identity(
        self, provider_match: MatchState, board_hint: Optional[list[MatchState]] = None
    ) -> MatchState:
        """
        Attach the fixture id of an already-stored fixture record to a live
        record that lacks one, so both converge on a single match key.

        Pollers pass ``board_hint`` (see ``board_snapshot``) to avoid reloading
        the board for every match in a batch.
        """
        if provider_match.fixture_id is not None:
            return provider_match

        comp_id = provider_match.competition.id if provider_match.competition else None
        home_id = provider_match.home.id if provider_match.home else None
        away_id = provider_match.away.id if provider_match.away else None
        kickoff = (provider_match.scheduled or "").strip()
        if comp_id is None or home_id is None or away_id is None or not kickoff:
            return provider_match

        candidates = board_hint if board_hint is not None else await self.board_snapshot()
        for candidate in candidates:
            if _same_fixture(candidate, comp_id, home_id, away_id, kickoff):
                logger.debug(
                    "identity_unified",
                    live_id=provider_match.id,
                    fixture_id=candidate.fixture_id,
                )
                return provider_match.model_copy(
                    update={
                        "fixture_id": candidate.fixture_id,
                        "fixture_date": provider_match.fixture_date or candidate.fixture_date,
                    }
                )
        return provider_match

    # ── Record writes ───────────────────────────────────────────────────
    async def _save(self, state: MatchState) -> MatchState:
        await self._store.put(state)
        self._publisher.publish(state.match_key, StreamEvent.STATE.value, state)
        return state

    async def upsert_from_provider(
        self, provider_match: MatchState, board_hint: Optional[list[MatchState]] = None
    ) -> MatchState:
        """
        Replace the stored record with the provider's view of the match.

        The stored event log is kept unless it is empty and the provider sent
        events. A FINISHED record is never overwritten by a non-finished one.
        """
        normalized = await self.normalize_for_identity(provider_match, board_hint)
        key = normalized.match_key
        current = await self._store.get(key)

        if (
            current is not None
            and MatchStatus.is_finished(current.status)
            and not MatchStatus.is_finished(normalized.status)
        ):
            logger.info(
                "finished_regression_ignored",
                match_key=key,
                incoming_status=normalized.status,
            )
            return current

        current_events = current.last_events if current is not None else []
        events = normalized.last_events if not current_events and normalized.last_events else current_events
        merged = normalized.model_copy(update={"last_events": events})

        prior_scores = current.scores if current is not None else None
        if prior_scores != merged.scores and merged.competition and merged.competition.id is not None:
            if self._standings is not None:
                await self._standings.invalidate_competition(merged.competition.id)

        return await self._save(merged)

    async def mark_as_finished(self, match_key: str) -> Optional[MatchState]:
        """
        Freeze a record at FINISHED with the full-time marker.

        Returns the frozen record (unchanged if it was already finished), or
        None when nothing is stored under ``match_key``.
        """
        current = await self._store.get(match_key)
        if current is None:
            return None
        if MatchStatus.is_finished(current.status):
            return current
        updated = current.model_copy(
            update={"status": MatchStatus.FINISHED.value, "time": FINISHED_TIME_MARKER}
        )
        logger.info("match_finished", match_key=match_key, score=current.scores.score if current.scores else None)
        return await self._save(updated)

    async def get_or_init_state(self, match_key: str) -> MatchState:
        """
        Stored record, or an UNKNOWN placeholder built from the key's numeric
        suffix. The placeholder is persisted only when the key carries an id,
        so it is stored under the key that was asked for.
        """
        existing = await self._store.get(match_key)
        if existing is not None:
            return existing
        match_id = match_id_from_key(match_key)
        placeholder = MatchState(id=match_id, status=MatchStatus.UNKNOWN.value)
        if match_id is None:
            logger.warning("placeholder_not_persisted", match_key=match_key)
            return placeholder
        await self._store.put(placeholder)
        return placeholder

    async def _require_state(self, match_key: str) -> MatchState:
        if match_id_from_key(match_key) is None:
            raise ValueError(f"match key without a numeric id: {match_key!r}")
        return await self.get_or_init_state(match_key)

    # ── Event log ───────────────────────────────────────────────────────
    async def append_events(
        self, match_key: str, new_events: list[MatchEvent], keep_last: Optional[int] = None
    ) -> MatchState:
        """Merge ``new_events`` into the stored log; persists and publishes only on change."""
        current = await self._require_state(match_key)
        if not new_events:
            return current

        cap = keep_last if keep_last is not None else self._settings.events_keep_last
        merged = EventMerger(match_key, keep_last=cap).merge(current.last_events, new_events)
        if merged == current.last_events:
            return current

        logger.debug(
            "events_appended",
            match_key=match_key,
            before=len(current.last_events),
            after=len(merged),
        )
        return await self._save(current.model_copy(update={"last_events": merged}))

    async def replace_events(self, match_key: str, events: list[MatchEvent]) -> MatchState:
        """Overwrite the log with an authoritative final fetch."""
        current = await self._require_state(match_key)
        return await self._save(current.model_copy(update={"last_events": list(events)}))

    # ── Key sets ────────────────────────────────────────────────────────
    async def get_live_match_keys(self) -> set[str]:
        return await self._keys.live_keys()

    async def replace_live_match_keys(self, match_keys: list[str]) -> None:
        await self._keys.replace_live_keys(match_keys)

    async def get_board_match_keys(self) -> list[str]:
        return await self._keys.board_keys()

    async def replace_board_match_keys(self, match_keys: list[str]) -> None:
        await self._keys.replace_board_keys(match_keys)

    # ── Read views ──────────────────────────────────────────────────────
    async def get_live_matches(self) -> list[MatchState]:
        states = await self._store.get_many(sorted(await self._keys.live_keys()))
        return sorted(states, key=lambda m: m.scheduled or "")

    async def get_board_matches(self) -> list[MatchState]:
        """
        The board view: every board record, minus fixtures dated another day,
        de-duplicated by identity (more advanced record wins), ordered by
        competition name then kickoff.
        """
        today = self._today().isoformat()
        deduped: dict[str, MatchState] = {}
        for state in await self.board_snapshot():
            if state.status == MatchStatus.NOT_STARTED.value:
                fixture_date = (state.fixture_date or "").strip()
                if fixture_date and fixture_date != today:
                    continue
            key = identity_key(state)
            existing = deduped.get(key)
            deduped[key] = state if existing is None else choose_more_advanced(existing, state)

        return sorted(
            deduped.values(),
            key=lambda m: ((m.competition.name if m.competition else None) or "", m.scheduled or ""),
        )

    compute_board_view = get_board_matches

    async def publish_live_board(self) -> int:
        """Publish the board view; before any board exists, publish the live records instead."""
        board = await self.get_board_matches()
        BOARD_MATCHES.set(len(board))
        if not board:
            board = await self.get_live_matches()
        return self._publisher.publish(Topic.LIVE_BOARD.value, StreamEvent.LIVE.value, board)
