"""Domain enumerations for the livescores platform."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class MatchStatus(str, Enum):
    """Provider status strings. Values match the wire format."""

    NOT_STARTED = "NOT STARTED"
    IN_PLAY = "IN PLAY"
    ADDED_TIME = "ADDED TIME"
    HALF_TIME_BREAK = "HALF TIME BREAK"
    FINISHED = "FINISHED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def is_live(cls, status: Optional[str]) -> bool:
        if isinstance(status, MatchStatus):
            status = status.value
        return status in _LIVE_STATUSES

    @classmethod
    def is_finished(cls, status: Optional[str]) -> bool:
        return status == cls.FINISHED.value


_LIVE_STATUSES = frozenset(
    {MatchStatus.IN_PLAY.value, MatchStatus.ADDED_TIME.value, MatchStatus.HALF_TIME_BREAK.value}
)


class EventKind(str, Enum):
    """Event types that get special treatment; everything else passes through as text."""

    GOAL = "GOAL"
    YELLOW_CARD = "YELLOWCARD"
    RED_CARD = "REDCARD"


# Goals and cards jitter by a minute between polls, so they dedup in 2-minute windows.
BUCKETED_EVENT_KINDS = frozenset(
    {EventKind.GOAL.value, EventKind.YELLOW_CARD.value, EventKind.RED_CARD.value}
)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


class FailureKind(str, Enum):
    """Why the resilience controller opened. Values double as the recorded reason."""

    QUOTA_EXCEEDED = "quota_exceeded"
    UNAUTHORIZED = "unauthorized"
    PAYLOAD_SHAPE = "json_parse_error"
    TRANSIENT = "transient_error"


class Topic(str, Enum):
    LIVE_BOARD = "live-board"


class StreamEvent(str, Enum):
    LIVE = "live"
    STATE = "state"
