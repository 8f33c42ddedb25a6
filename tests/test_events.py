"""Tests for the event bus and event types."""

from __future__ import annotations

import asyncio

from switchboard.events.bus import Event, EventBus
from switchboard.events.types import (
    DISPATCH_COMPLETED,
    DISPATCH_FAILED,
    DISPATCH_STARTED,
    MODEL_DISCOVERED,
    MODEL_LOST,
)


class TestEvent:
    def test_auto_timestamp(self):
        event = Event(event_type="test", topic_id="t1")
        assert event.timestamp != ""

    def test_explicit_timestamp(self):
        event = Event(event_type="test", timestamp="2025-01-01T00:00:00")
        assert event.timestamp == "2025-01-01T00:00:00"

    def test_default_data(self):
        assert Event(event_type="test").data == {}


class TestEventBus:
    def test_subscribe_and_publish_sync(self):
        bus = EventBus()
        received = []
        bus.subscribe(DISPATCH_COMPLETED, received.append)
        bus.publish(DISPATCH_COMPLETED, topic_id="t1", model_id="m")

        assert len(received) == 1
        assert received[0].topic_id == "t1"
        assert received[0].data == {"model_id": "m"}

    def test_other_types_are_not_delivered(self):
        bus = EventBus()
        received = []
        bus.subscribe(DISPATCH_COMPLETED, received.append)
        bus.publish(DISPATCH_FAILED, topic_id="t1")
        assert received == []

    def test_subscribe_all(self):
        bus = EventBus()
        received = []
        bus.subscribe_all(received.append)
        bus.publish(DISPATCH_STARTED)
        bus.publish(MODEL_DISCOVERED, model_id="m")
        assert [e.event_type for e in received] == [DISPATCH_STARTED, MODEL_DISCOVERED]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(MODEL_LOST, received.append)
        bus.unsubscribe(MODEL_LOST, received.append)
        bus.subscribe_all(received.append)
        bus.unsubscribe_all(received.append)
        bus.publish(MODEL_LOST)
        assert received == []

    def test_failing_handler_does_not_break_emit(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise ValueError("boom")

        bus.subscribe(DISPATCH_STARTED, broken)
        bus.subscribe(DISPATCH_STARTED, received.append)
        bus.publish(DISPATCH_STARTED)
        assert len(received) == 1

    async def test_async_handler(self):
        bus = EventBus()
        received = []

        async def handler(event: Event):
            await asyncio.sleep(0)
            received.append(event)

        bus.subscribe(DISPATCH_COMPLETED, handler)
        bus.publish(DISPATCH_COMPLETED, topic_id="t1")
        await bus.drain(timeout=1)
        assert [e.topic_id for e in received] == ["t1"]

    def test_async_handler_without_loop_is_skipped(self):
        bus = EventBus()

        async def handler(event: Event):
            raise AssertionError("should not run")

        bus.subscribe(DISPATCH_COMPLETED, handler)
        bus.publish(DISPATCH_COMPLETED)
        assert len(bus.recent_events()) == 1

    def test_history(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            bus.publish(DISPATCH_STARTED if i % 2 else DISPATCH_COMPLETED, topic_id=str(i))
        assert [e.topic_id for e in bus.recent_events()] == ["2", "3", "4"]
        assert [e.topic_id for e in bus.recent_events(event_type=DISPATCH_STARTED)] == ["3"]
        assert [e.topic_id for e in bus.recent_events(limit=1)] == ["4"]

    def test_clear(self):
        bus = EventBus()
        received = []
        bus.subscribe(DISPATCH_STARTED, received.append)
        bus.publish(DISPATCH_STARTED)
        bus.clear()
        bus.publish(DISPATCH_STARTED)
        assert len(received) == 1
        assert len(bus.recent_events()) == 1

    def test_subscribe_returns_unsubscriber(self):
        bus = EventBus()
        received = []
        stop = bus.subscribe(DISPATCH_STARTED, received.append)
        bus.publish(DISPATCH_STARTED)
        stop()
        stop()
        bus.publish(DISPATCH_STARTED)
        assert len(received) == 1

    def test_subscribe_topic(self):
        bus = EventBus()
        everything, completions = [], []
        bus.subscribe_topic("t1", everything.append)
        bus.subscribe_topic("t1", completions.append, event_type=DISPATCH_COMPLETED)
        bus.publish(DISPATCH_STARTED, topic_id="t1")
        bus.publish(DISPATCH_COMPLETED, topic_id="t1")
        bus.publish(DISPATCH_COMPLETED, topic_id="t2")
        assert [e.event_type for e in everything] == [DISPATCH_STARTED, DISPATCH_COMPLETED]
        assert [e.topic_id for e in completions] == ["t1"]

    def test_recent_events_by_topic(self):
        bus = EventBus()
        bus.publish(DISPATCH_STARTED, topic_id="a")
        bus.publish(DISPATCH_STARTED, topic_id="b")
        bus.publish(DISPATCH_FAILED, topic_id="a")
        assert [e.event_type for e in bus.recent_events(topic_id="a")] == [
            DISPATCH_STARTED,
            DISPATCH_FAILED,
        ]
