"""
Poll ticks for the livescores scheduler.

- ``LivePoller.poll_live_matches``: reconciles the live/finished universe
- ``LivePoller.poll_events``: fetches events for a rotating slice of live matches
- ``FixturesPoller.poll_fixtures_today``: seeds today's planned fixtures

Every provider call goes through the resilience controller. A tick that gets
no usable answer returns without side effects; classified failures never
escape a tick.
"""
from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.models.domain import (
    Competition,
    FixturesResponse,
    LiveMatchesResponse,
    MatchEvent,
    MatchEventsResponse,
    MatchState,
    Scores,
)
from shared.models.enums import MatchStatus
from shared.utils.circuit_breaker import ResilienceController
from shared.utils.logging import get_logger
from shared.utils.metrics import EVENTS_ACCEPTED, LIVE_MATCHES
from shared.utils.minutes import normalize_minute
from shared.utils.redis_manager import RedisManager

from ingest.merge import normalize_event_type, normalize_side
from ingest.providers.base import BaseProvider, utc_today
from ingest.service import MatchService
from scheduler.engine.rotation import EventRotation

logger = get_logger(__name__)


def stable_event_key(match_key: str, event: MatchEvent) -> str:
    """
    Poll-stable identity of a provider event: match, minute, type and side.

    The provider's own id changes between polls and the player is often
    filled in later, so neither takes part.
    """
    parts = (
        match_key,
        normalize_minute(event.time),
        normalize_event_type(event.event),
        normalize_side(event.home_away),
    )
    return "|".join(p.strip().lower() for p in parts)


def _has_blank_player(event: MatchEvent) -> bool:
    return not (event.player or "").strip()


def should_accept_event(
    state: MatchState, stable_id: str, incoming: MatchEvent, is_new_by_dedup: bool
) -> bool:
    """
    Accept when the seen-marker says new, when the stored log lacks the event
    (marker and record out of sync), or when the incoming copy adds a player
    to a stored player-less one.
    """
    if is_new_by_dedup:
        return True
    same = [e for e in state.last_events if stable_event_key(state.match_key, e) == stable_id]
    if not same:
        return True
    return not _has_blank_player(incoming) and any(_has_blank_player(e) for e in same)


class LivePoller:
    """Live/finished reconciliation and event rotation ticks."""

    def __init__(
        self,
        provider: BaseProvider,
        breaker: ResilienceController,
        matches: MatchService,
        redis: RedisManager,
        rotation: Optional[EventRotation] = None,
        settings: Settings | None = None,
    ) -> None:
        self._provider = provider
        self._breaker = breaker
        self._matches = matches
        self._redis = redis
        self._settings = settings or get_settings()
        self._rotation = rotation or EventRotation(self._settings)

    # ── Shared fetch ────────────────────────────────────────────────────
    async def _fetch_events(self, state: MatchState) -> Optional[list[MatchEvent]]:
        """Non-placeholder events for a live id, or None when the provider gave nothing usable."""
        if state.id is None:
            return None
        raw = await self._breaker.call(self._provider.fetch_match_events, state.id)
        if raw is None:
            return None
        try:
            resp = MatchEventsResponse.model_validate_json(raw)
        except ValidationError as exc:
            self._breaker.report_payload_error(f"events: {exc.error_count()} errors")
            return None
        if resp.success is not True:
            return None
        return resp.events

    async def refresh_finished_events(self, state: MatchState) -> Optional[MatchState]:
        """One authoritative event fetch for a match that just ended; replaces the log."""
        events = await self._fetch_events(state)
        if events is None:
            return None
        logger.info("final_events_refreshed", match_key=state.match_key, events=len(events))
        return await self._matches.replace_events(state.match_key, events)

    # ── Live / finished reconciliation ──────────────────────────────────
    async def poll_live_matches(self) -> None:
        previous_live = await self._matches.get_live_match_keys()
        previous_board = await self._matches.get_board_match_keys()

        raw = await self._breaker.call(self._provider.fetch_live_matches)
        if raw is None:
            return
        try:
            resp = LiveMatchesResponse.model_validate_json(raw)
        except ValidationError as exc:
            self._breaker.report_payload_error(f"live: {exc.error_count()} errors")
            return
        if resp.success is not True:
            logger.info("live_poll_unsuccessful")
            return

        # Identities are unified before any key list is built, otherwise one
        # match could appear under both its live and fixture key.
        board_hint = await self._matches.board_snapshot()
        provider_matches = [
            await self._matches.normalize_for_identity(m, board_hint) for m in resp.matches
        ]
        live = [m for m in provider_matches if MatchStatus.is_live(m.status)]
        finished = [m for m in provider_matches if MatchStatus.is_finished(m.status)]
        new_live_keys = list(dict.fromkeys(m.match_key for m in live))
        new_finished_keys = list(dict.fromkeys(m.match_key for m in finished))

        if not new_live_keys and not new_finished_keys:
            for key in previous_live:
                await self._matches.mark_as_finished(key)
            await self._matches.replace_live_match_keys([])
            LIVE_MATCHES.set(0)
            await self._matches.publish_live_board()
            logger.info("live_poll_empty", frozen=len(previous_live))
            return

        for match in live:
            await self._matches.upsert_from_provider(match, board_hint)

        for match in finished:
            previous = await self._matches.get_or_init_state(match.match_key)
            updated = await self._matches.upsert_from_provider(match, board_hint)
            if not MatchStatus.is_finished(previous.status):
                await self.refresh_finished_events(updated)

        await self._matches.replace_live_match_keys(new_live_keys)
        LIVE_MATCHES.set(len(new_live_keys))

        disappeared = [
            key for key in sorted(previous_live)
            if key not in new_live_keys and key not in new_finished_keys
        ]
        for key in disappeared:
            frozen = await self._matches.mark_as_finished(key)
            if frozen is not None:
                await self.refresh_finished_events(frozen)

        for key in new_finished_keys:
            await self._matches.mark_as_finished(key)

        board_keys = list(
            dict.fromkeys([*new_live_keys, *new_finished_keys, *previous_board, *disappeared])
        )
        await self._matches.replace_board_match_keys(board_keys)
        await self._matches.publish_live_board()

        logger.info(
            "live_poll_reconciled",
            live=len(new_live_keys),
            finished=len(new_finished_keys),
            disappeared=len(disappeared),
            board=len(board_keys),
        )

    # ── Event rotation ──────────────────────────────────────────────────
    async def poll_events(self) -> None:
        live_matches = [
            m for m in await self._matches.get_live_matches() if MatchStatus.is_live(m.status)
        ]
        if not live_matches or self._breaker.is_open():
            return

        any_update = False
        for state in self._rotation.next_slice(live_matches):
            events = await self._fetch_events(state)
            if not events:
                continue

            match_key = state.match_key
            accepted: list[MatchEvent] = []
            for event in events:
                stable_id = stable_event_key(match_key, event)
                is_new = await self._redis.mark_event_seen(
                    match_key, stable_id, self._settings.seen_events_ttl_s
                )
                if should_accept_event(state, stable_id, event, is_new):
                    accepted.append(event)

            if accepted:
                EVENTS_ACCEPTED.inc(len(accepted))
                updated = await self._matches.append_events(match_key, accepted)
                if updated.last_events != state.last_events:
                    any_update = True

        if any_update:
            await self._matches.publish_live_board()


class FixturesPoller:
    """Seeds the board with today's planned fixtures for the configured competitions."""

    def __init__(
        self,
        provider: BaseProvider,
        breaker: ResilienceController,
        matches: MatchService,
        settings: Settings | None = None,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self._provider = provider
        self._breaker = breaker
        self._matches = matches
        self._settings = settings or get_settings()
        self._today = today

    async def _fetch_planned(self, competition_id: int) -> list[MatchState]:
        raw = await self._breaker.call(self._provider.fetch_fixtures_today, competition_id)
        if raw is None:
            return []
        try:
            resp = FixturesResponse.model_validate_json(raw)
        except ValidationError as exc:
            self._breaker.report_payload_error(f"fixtures: {exc.error_count()} errors")
            return []
        if resp.success is not True:
            return []

        today = self._today().isoformat()
        planned: list[MatchState] = []
        for fixture in resp.fixtures:
            comp = fixture.competition
            planned.append(
                MatchState(
                    fixture_id=fixture.id,
                    fixture_date=fixture.date or today,
                    scheduled=fixture.time[:5] if fixture.time else None,
                    status=MatchStatus.NOT_STARTED.value,
                    competition=Competition(
                        id=comp.id if comp else None,
                        name=comp.name if comp else None,
                        country=fixture.country.name if fixture.country else None,
                    ),
                    home=fixture.home,
                    away=fixture.away,
                    scores=Scores(score=""),
                )
            )
        return planned

    async def poll_fixtures_today(self) -> int:
        """Upsert today's fixtures and add their keys to the board. Returns how many were seen."""
        competition_ids = self._settings.competition_ids
        if not competition_ids:
            return 0

        planned: list[MatchState] = []
        for competition_id in competition_ids:
            planned.extend(await self._fetch_planned(competition_id))
        if not planned:
            return 0

        for state in planned:
            await self._matches.upsert_from_provider(state)

        new_keys = [s.match_key for s in planned]
        board_keys = list(dict.fromkeys([*await self._matches.get_board_match_keys(), *new_keys]))
        await self._matches.replace_board_match_keys(board_keys)
        await self._matches.publish_live_board()
        logger.info("fixtures_seeded", fixtures=len(planned), board=len(board_keys))
        return len(planned)
