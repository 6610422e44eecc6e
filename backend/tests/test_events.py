"""
Tests for the live-update broadcaster and the SSE framing.
"""
import asyncio
import json

import pytest

from frogtable.events import EventBroadcaster, Ping, QueryUpdated
from frogtable.routers.live import KEEPALIVE_COMMENT, event_stream, format_event


class TestEventBroadcaster:
    """Fan-out without blocking the publisher"""

    def test_new_subscriber_gets_greeting(self):
        hub = EventBroadcaster(greeting="Hello from the server!")
        sub = hub.subscribe()
        assert sub.drain() == [Ping(data="Hello from the server!")]

    def test_greeting_goes_only_to_the_newcomer(self):
        hub = EventBroadcaster()
        first = hub.subscribe()
        first.drain()
        hub.subscribe()
        assert first.drain() == []

    def test_publish_reaches_every_subscriber(self):
        hub = EventBroadcaster()
        subs = [hub.subscribe() for _ in range(3)]
        for sub in subs:
            sub.drain()
        assert hub.publish(QueryUpdated(name="q1")) == 3
        for sub in subs:
            assert sub.drain() == [QueryUpdated(name="q1")]

    def test_publish_without_subscribers(self):
        assert EventBroadcaster().publish(Ping(data="x")) == 0

    def test_slow_subscriber_loses_oldest(self):
        hub = EventBroadcaster(queue_size=4)
        sub = hub.subscribe()
        for i in range(10):
            hub.publish(QueryUpdated(name=f"q{i}"))
        assert [e.name for e in sub.drain()] == ["q6", "q7", "q8", "q9"]
        assert sub.dropped == 7

    def test_close_unsubscribes(self):
        hub = EventBroadcaster()
        sub = hub.subscribe()
        assert hub.subscriber_count == 1
        sub.close()
        sub.close()
        assert hub.subscriber_count == 0
        assert hub.publish(Ping(data="x")) == 0
        assert sub.drain() == []

    def test_events_serialize_with_tags(self):
        assert json.loads(Ping(data="hi").model_dump_json()) == {"eventType": "Ping", "data": "hi"}
        assert json.loads(QueryUpdated(name="q").model_dump_json()) == {"eventType": "QueryUpdated", "name": "q"}


class TestSubscriptionAsync:
    """Waiting for events inside an event loop"""

    def test_next_batch_wakes_on_publish_from_thread(self):
        async def scenario():
            hub = EventBroadcaster()
            sub = hub.subscribe()
            assert await sub.next_batch(timeout=1.0) == [Ping(data=hub.greeting)]
            loop = asyncio.get_running_loop()
            loop.run_in_executor(None, hub.publish, QueryUpdated(name="q1"))
            return await sub.next_batch(timeout=5.0)

        assert asyncio.run(scenario()) == [QueryUpdated(name="q1")]

    def test_next_batch_times_out_empty(self):
        async def scenario():
            hub = EventBroadcaster()
            sub = hub.subscribe()
            sub.drain()
            return await sub.next_batch(timeout=0.05)

        assert asyncio.run(scenario()) == []

    def test_next_batch_needs_a_loop(self):
        sub = EventBroadcaster().subscribe()
        with pytest.raises(RuntimeError):
            asyncio.run(sub.next_batch(timeout=0.01))


class TestEventStream:
    """SSE frames"""

    def test_format_event(self):
        assert format_event(QueryUpdated(name="q1")) == 'data: {"eventType":"QueryUpdated","name":"q1"}\n\n'

    def test_stream_sends_events_then_keepalive(self):
        async def scenario():
            hub = EventBroadcaster()
            sub = hub.subscribe()
            stream = event_stream(sub, keepalive_seconds=0.05)
            frames = [await stream.__anext__()]
            hub.publish(QueryUpdated(name="q1"))
            frames.append(await stream.__anext__())
            frames.append(await stream.__anext__())
            await stream.aclose()
            return frames, hub.subscriber_count

        frames, remaining = asyncio.run(scenario())
        assert frames == [
            'data: {"eventType":"Ping","data":"Hello from the server!"}\n\n',
            'data: {"eventType":"QueryUpdated","name":"q1"}\n\n',
            KEEPALIVE_COMMENT,
        ]
        assert remaining == 0
