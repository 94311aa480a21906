"""Unit tests for the SSE fanout hub: delivery, serialization and pruning."""
from __future__ import annotations

import json

import pytest

from conftest import make_state

from api.stream.hub import HEARTBEAT_FRAME, FanoutHub, serialize_event
from shared.config import Settings


@pytest.fixture
def hub() -> FanoutHub:
    return FanoutHub(Settings(stream_queue_size=2, stream_heartbeat_s=0.01, metrics_enabled=False))


def parse_frame(frame: str) -> tuple[str, object]:
    event_line, data_line, *_ = frame.split("\n")
    return event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))


def test_serialize_model_list() -> None:
    frame = serialize_event("live", [make_state(id=1), make_state(fixture_id=2)])
    assert frame.endswith("\n\n")
    event, data = parse_frame(frame)
    assert event == "live"
    assert [m["match_key"] for m in data] == ["ls-1", "ls-2"]


@pytest.mark.asyncio
async def test_publish_without_subscribers(hub: FanoutHub) -> None:
    assert hub.publish("live-board", "live", []) == 0


@pytest.mark.asyncio
async def test_publish_reaches_topic_subscribers_only(hub: FanoutHub) -> None:
    first = hub.subscribe("ls-1")
    second = hub.subscribe("ls-1")
    other = hub.subscribe("live-board")

    assert hub.publish("ls-1", "state", make_state(id=1)) == 2

    for sub in (first, second):
        event, data = parse_frame(sub.queue.get_nowait())
        assert event == "state"
        assert data["match_key"] == "ls-1"
    assert other.queue.empty()


@pytest.mark.asyncio
async def test_full_subscriber_is_pruned_after_broadcast(hub: FanoutHub) -> None:
    slow = hub.subscribe("live-board")
    fast = hub.subscribe("live-board")

    hub.publish("live-board", "live", [])
    hub.publish("live-board", "live", [])
    fast.queue.get_nowait()
    fast.queue.get_nowait()

    assert hub.publish("live-board", "live", []) == 1
    assert slow.closed
    assert slow.close_reason == "error"
    assert hub.subscribers("live-board") == 1
    assert not fast.closed


@pytest.mark.asyncio
async def test_close_is_idempotent_and_drops_empty_topic(hub: FanoutHub) -> None:
    sub = hub.subscribe("ls-9")
    sub.close()
    sub.close("timeout")
    assert sub.close_reason == "complete"
    assert hub.subscribers("ls-9") == 0
    assert hub.subscriber_count == 0
    assert hub.publish("ls-9", "state", {}) == 0


@pytest.mark.asyncio
async def test_stream_yields_frames_then_heartbeat(hub: FanoutHub) -> None:
    sub = hub.subscribe("ls-1")
    hub.publish("ls-1", "state", {"score": "1 - 0"})

    stream = sub.stream()
    event, data = parse_frame(await stream.__anext__())
    assert event == "state"
    assert data == {"score": "1 - 0"}
    assert await stream.__anext__() == HEARTBEAT_FRAME

    await stream.aclose()
    assert sub.closed
    assert hub.subscribers("ls-1") == 0


@pytest.mark.asyncio
async def test_close_all(hub: FanoutHub) -> None:
    subs = [hub.subscribe("live-board"), hub.subscribe("ls-1")]
    hub.close_all()
    assert all(s.closed for s in subs)
    assert hub.subscriber_count == 0
