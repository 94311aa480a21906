"""
Resilience controller (circuit breaker) for upstream provider calls.

States:
  CLOSED: calls pass through
  OPEN:   calls are short-circuited until a deadline; the reason is recorded

A classified failure opens the circuit for a failure-specific cooldown. The
circuit closes by itself once the deadline passes, or immediately after any
successful call. Only one reason/deadline is tracked: a new failure replaces
the previous one.

The state lives in one immutable ``BreakerSnapshot`` that is swapped as a
whole, so readers always see a consistent (state, deadline, reason) triple.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional, TypeVar

from shared.config import Settings, get_settings
from shared.models.enums import BreakerState, FailureKind
from shared.utils.errors import PayloadShapeError, ProviderUnauthorized, QuotaExceeded
from shared.utils.logging import get_logger
from shared.utils.metrics import BREAKER_OPEN, BREAKER_TRIPS

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BreakerSnapshot:
    state: BreakerState
    disabled_until: Optional[float] = None
    reason: Optional[str] = None


_CLOSED = BreakerSnapshot(state=BreakerState.CLOSED)


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an upstream exception to the failure class that decides the cooldown."""
    if isinstance(exc, QuotaExceeded):
        return FailureKind.QUOTA_EXCEEDED
    if isinstance(exc, ProviderUnauthorized):
        return FailureKind.UNAUTHORIZED
    if isinstance(exc, PayloadShapeError):
        return FailureKind.PAYLOAD_SHAPE
    return FailureKind.TRANSIENT


class ResilienceController:
    """
    Gate around every provider call.

    Args:
        name: Identifier for logging and metrics.
        settings: Source of the per-failure cooldowns.
        clock: Wall-clock source in epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        name: str = "provider",
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings or get_settings()
        self.name = name
        self._clock = clock
        self._cooldowns: dict[FailureKind, float] = {
            FailureKind.QUOTA_EXCEEDED: settings.cooldown_quota_s,
            FailureKind.UNAUTHORIZED: settings.cooldown_unauthorized_s,
            FailureKind.PAYLOAD_SHAPE: settings.cooldown_payload_s,
            FailureKind.TRANSIENT: settings.cooldown_transient_s,
        }
        self._snapshot: BreakerSnapshot = _CLOSED

    # ── State ───────────────────────────────────────────────────────────
    def snapshot(self) -> BreakerSnapshot:
        """Current state; an expired OPEN snapshot is reported (and stored) as CLOSED."""
        current = self._snapshot
        if current.state == BreakerState.OPEN and current.disabled_until is not None:
            if self._clock() >= current.disabled_until:
                logger.info("breaker_closed", name=self.name, cause="cooldown_elapsed", reason=current.reason)
                self._snapshot = _CLOSED
                BREAKER_OPEN.labels(name=self.name).set(0)
                return _CLOSED
        return current

    @property
    def state(self) -> BreakerState:
        return self.snapshot().state

    def is_open(self) -> bool:
        return self.snapshot().state == BreakerState.OPEN

    @property
    def stats(self) -> dict[str, Any]:
        snap = self.snapshot()
        until = (
            datetime.fromtimestamp(snap.disabled_until, tz=timezone.utc).isoformat()
            if snap.disabled_until is not None
            else None
        )
        return {
            "name": self.name,
            "state": snap.state.value,
            "reason": snap.reason,
            "disabled_until": until,
        }

    # ── Transitions ─────────────────────────────────────────────────────
    def trip(self, kind: FailureKind, error: str = "") -> BreakerSnapshot:
        """Open for the cooldown of ``kind``, replacing any previous deadline."""
        cooldown = self._cooldowns[kind]
        snap = BreakerSnapshot(
            state=BreakerState.OPEN,
            disabled_until=self._clock() + cooldown,
            reason=kind.value,
        )
        self._snapshot = snap
        BREAKER_OPEN.labels(name=self.name).set(1)
        BREAKER_TRIPS.labels(name=self.name, reason=kind.value).inc()
        logger.warning(
            "breaker_opened",
            name=self.name,
            reason=kind.value,
            cooldown_s=cooldown,
            error=error,
        )
        return snap

    def report_payload_error(self, error: str = "") -> BreakerSnapshot:
        """Callers that fail to parse a response report it here."""
        return self.trip(FailureKind.PAYLOAD_SHAPE, error)

    def reset(self) -> None:
        if self._snapshot.reason is not None:
            logger.info("breaker_closed", name=self.name, cause="call_succeeded", reason=self._snapshot.reason)
        self._snapshot = _CLOSED
        BREAKER_OPEN.labels(name=self.name).set(0)

    # ── Guarded call ────────────────────────────────────────────────────
    async def call(
        self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any
    ) -> Optional[T]:
        """
        Run ``func`` unless the circuit is open.

        Returns None when short-circuited or when the call failed; the failure
        is classified and recorded, never re-raised.
        """
        if self.is_open():
            logger.debug("breaker_short_circuit", name=self.name, reason=self._snapshot.reason)
            return None
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            self.trip(classify_failure(exc), error=str(exc))
            return None
        if self._snapshot.reason is not None:
            self.reset()
        return result
