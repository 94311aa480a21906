"""
Fanout hub for server-sent event streams.

Topic-keyed registry of subscribers:
- ``subscribe(topic)`` registers a bounded per-subscriber queue
- ``publish(topic, event, payload)`` serializes once and offers the frame to
  every subscriber of a snapshot of the topic; subscribers whose queue is
  full are pruned after the broadcast
- a subscriber leaves through ``close(reason)`` with reason complete, timeout
  or error, wired to the end of its stream

Delivery is best effort at publish time; late subscribers wait for the next
periodic publish.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import FANOUT_PRUNED, FANOUT_PUBLISHES, FANOUT_SUBSCRIBERS

logger = get_logger(__name__)

HEARTBEAT_FRAME = ": ping\n\n"

CLOSE_COMPLETE = "complete"
CLOSE_TIMEOUT = "timeout"
CLOSE_ERROR = "error"


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, (list, tuple)):
        return [_jsonable(p) for p in payload]
    return payload


def serialize_event(event: str, payload: Any) -> str:
    """One SSE frame: ``event:`` line, single-line JSON ``data:``, blank line."""
    data = json.dumps(_jsonable(payload), default=str, separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"


@dataclass(eq=False)
class Subscription:
    """A single stream subscriber on one topic."""

    hub: "FanoutHub"
    topic: str
    queue: asyncio.Queue[str]
    subscription_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    closed: bool = False
    close_reason: Optional[str] = None

    def offer(self, frame: str) -> bool:
        """Enqueue without waiting. False means the subscriber is dead."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    def close(self, reason: str = CLOSE_COMPLETE) -> None:
        """Idempotent removal from the hub."""
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        self.hub._remove(self, reason)

    async def stream(self, heartbeat_s: Optional[float] = None) -> AsyncIterator[str]:
        """
        Yield frames as they arrive, with a heartbeat comment whenever the
        topic stays quiet for ``heartbeat_s``. The subscription closes when the
        consumer stops iterating.
        """
        interval = heartbeat_s if heartbeat_s is not None else self.hub.heartbeat_s
        reason = CLOSE_COMPLETE
        try:
            while not self.closed:
                try:
                    frame = await asyncio.wait_for(self.queue.get(), timeout=interval)
                except asyncio.TimeoutError:
                    frame = HEARTBEAT_FRAME
                yield frame
        except asyncio.CancelledError:
            reason = CLOSE_TIMEOUT
            raise
        except Exception:
            reason = CLOSE_ERROR
            raise
        finally:
            self.close(reason)


class FanoutHub:
    """
    In-process topic registry for SSE subscribers.

    The registry is only touched from the event loop thread; ``publish``
    iterates over a copy of the topic's subscriber set, so subscribe and
    close calls made while a broadcast is in progress cannot disturb it.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._topics: dict[str, set[Subscription]] = {}

    @property
    def heartbeat_s(self) -> float:
        return self._settings.stream_heartbeat_s

    @property
    def subscriber_count(self) -> int:
        return sum(len(subs) for subs in self._topics.values())

    def subscribers(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def subscribe(self, topic: str) -> Subscription:
        sub = Subscription(
            hub=self,
            topic=topic,
            queue=asyncio.Queue(maxsize=self._settings.stream_queue_size),
        )
        self._topics.setdefault(topic, set()).add(sub)
        FANOUT_SUBSCRIBERS.inc()
        logger.debug("stream_subscribed", topic=topic, subscription_id=sub.subscription_id)
        return sub

    def _remove(self, sub: Subscription, reason: str) -> None:
        subs = self._topics.get(sub.topic)
        if subs is None or sub not in subs:
            return
        subs.discard(sub)
        if not subs:
            del self._topics[sub.topic]
        FANOUT_SUBSCRIBERS.dec()
        FANOUT_PRUNED.labels(reason=reason).inc()
        logger.debug(
            "stream_unsubscribed",
            topic=sub.topic,
            subscription_id=sub.subscription_id,
            reason=reason,
        )

    def publish(self, topic: str, event: str, payload: Any) -> int:
        """
        Broadcast ``payload`` as a named event to the topic's subscribers.

        Returns the number of subscribers the frame was delivered to.
        """
        targets = list(self._topics.get(topic, ()))
        if not targets:
            return 0

        frame = serialize_event(event, payload)
        FANOUT_PUBLISHES.labels(event=event).inc()

        dead: list[Subscription] = []
        delivered = 0
        for sub in targets:
            if sub.offer(frame):
                delivered += 1
            else:
                dead.append(sub)

        for sub in dead:
            sub.close(CLOSE_ERROR)
        if dead:
            logger.info("stream_subscribers_pruned", topic=topic, pruned=len(dead))
        return delivered

    def close_all(self) -> None:
        for subs in list(self._topics.values()):
            for sub in list(subs):
                sub.close(CLOSE_COMPLETE)
