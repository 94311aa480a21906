"""
Pydantic v2 domain models shared across the livescores services.

These double as the provider wire format: every model ignores unknown fields
and defaults missing ones, so a provider schema addition never breaks parsing.
Instances are frozen; updates go through ``model_copy(update=...)``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Optional, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field

UNKNOWN_MATCH_KEY = "ls-unknown"
MATCH_KEY_PREFIX = "ls-"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


T = TypeVar("T")

# Providers send `null` instead of `[]` for empty collections.
NullableList = Annotated[list[T], BeforeValidator(_none_to_list)]


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


# ── Reference entities ──────────────────────────────────────────────────
class Competition(DomainModel):
    id: Optional[int] = None
    name: Optional[str] = None
    country: Optional[str] = None


class Team(DomainModel):
    id: Optional[int] = None
    name: Optional[str] = None
    logo: Optional[str] = None


class Scores(DomainModel):
    score: Optional[str] = None
    ht_score: Optional[str] = None
    ft_score: Optional[str] = None
    et_score: Optional[str] = None
    ps_score: Optional[str] = None


# ── Match event ─────────────────────────────────────────────────────────
class MatchEvent(DomainModel):
    """
    One provider event (goal, card, substitution...).

    ``id`` is the provider's own id and changes between polls; it is carried
    for display only and never used for identity.
    """

    id: Optional[str] = None
    event: Optional[str] = None
    time: Optional[str] = None
    player: Optional[str] = None
    home_away: Optional[str] = None
    match_id: Optional[str] = None
    ts: datetime = Field(default_factory=_utcnow)

    @property
    def is_placeholder(self) -> bool:
        kind = (self.event or "").strip()
        return not kind or kind == "."


# ── Match state ─────────────────────────────────────────────────────────
class MatchState(DomainModel):
    """Canonical per-match record, keyed by ``match_key``."""

    id: Optional[int] = None
    fixture_id: Optional[int] = None
    fixture_date: Optional[str] = None
    scheduled: Optional[str] = None
    status: Optional[str] = None
    time: Optional[str] = None
    competition: Optional[Competition] = None
    home: Optional[Team] = None
    away: Optional[Team] = None
    scores: Optional[Scores] = None
    last_events: NullableList[MatchEvent] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def match_key(self) -> str:
        ident = self.fixture_id if self.fixture_id is not None else self.id
        if ident is None:
            return UNKNOWN_MATCH_KEY
        return f"{MATCH_KEY_PREFIX}{ident}"


# ── Provider envelopes ──────────────────────────────────────────────────
class LiveMatchesData(DomainModel):
    match: NullableList[MatchState] = Field(default_factory=list)


class LiveMatchesResponse(DomainModel):
    success: Optional[bool] = None
    data: Optional[LiveMatchesData] = None

    @property
    def matches(self) -> list[MatchState]:
        return self.data.match if self.data else []


class MatchEventsData(DomainModel):
    event: NullableList[MatchEvent] = Field(default_factory=list)


class MatchEventsResponse(DomainModel):
    success: Optional[bool] = None
    data: Optional[MatchEventsData] = None

    @property
    def events(self) -> list[MatchEvent]:
        """Provider events minus blank/placeholder markers."""
        raw = self.data.event if self.data else []
        return [e for e in raw if not e.is_placeholder]


class FixtureCompetition(DomainModel):
    id: Optional[int] = None
    name: Optional[str] = None


class Country(DomainModel):
    id: Optional[int] = None
    name: Optional[str] = None


class Fixture(DomainModel):
    id: Optional[int] = None
    date: Optional[str] = None
    time: Optional[str] = None
    competition: Optional[FixtureCompetition] = None
    country: Optional[Country] = None
    home: Optional[Team] = None
    away: Optional[Team] = None


class FixturesData(DomainModel):
    fixtures: NullableList[Fixture] = Field(default_factory=list)


class FixturesResponse(DomainModel):
    success: Optional[bool] = None
    data: Optional[FixturesData] = None

    @property
    def fixtures(self) -> list[Fixture]:
        return self.data.fixtures if self.data else []
