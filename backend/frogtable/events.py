from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .metrics import counter_inc, gauge_dec, gauge_inc

logger = logging.getLogger(__name__)


class Ping(BaseModel):
    eventType: Literal["Ping"] = "Ping"
    data: str


class QueryUpdated(BaseModel):
    eventType: Literal["QueryUpdated"] = "QueryUpdated"
    name: str


BroadcastEvent = Annotated[Union[Ping, QueryUpdated], Field(discriminator="eventType")]


class Subscription:
    """One live consumer of the broadcaster.

    Holds at most `maxsize` unread events; when full, the oldest one is dropped.
    Async consumers are woken through the event loop they subscribed from.
    """

    def __init__(self, hub: "EventBroadcaster", maxsize: int):
        self._hub = hub
        self._queue: deque = deque(maxlen=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
            self._wakeup: Optional[asyncio.Event] = asyncio.Event()
        except RuntimeError:
            self._loop = None
            self._wakeup = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, event) -> bool:
        """Enqueue without blocking; returns True when an older event was dropped."""
        with self._lock:
            if self._closed:
                return False
            overflow = len(self._queue) == self._queue.maxlen
            self._queue.append(event)
            if overflow:
                self.dropped += 1
        if self._loop is not None and self._wakeup is not None:
            try:
                self._loop.call_soon_threadsafe(self._wakeup.set)
            except RuntimeError:
                # subscriber's loop has shut down
                self.close()
        return overflow

    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def drain(self) -> List[Union[Ping, QueryUpdated]]:
        with self._lock:
            items = list(self._queue)
            self._queue.clear()
        return items

    async def next_batch(self, timeout: float | None = None) -> List[Union[Ping, QueryUpdated]]:
        """Wait until at least one event is queued; returns [] on timeout."""
        if self._wakeup is None:
            raise RuntimeError("Subscription was not created inside an event loop")
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            items = self.drain()
            if items:
                return items
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return []
            self._wakeup.clear()
            if self.pending():
                continue
            try:
                await asyncio.wait_for(self._wakeup.wait(), remaining)
            except asyncio.TimeoutError:
                return []

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.clear()
        self._hub._remove(self)


class EventBroadcaster:
    """Fan-out hub for live-update events. `publish` never blocks."""

    def __init__(self, queue_size: int = 16, greeting: str = "Hello from the server!"):
        self.queue_size = queue_size
        self.greeting = greeting
        self._subs: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.queue_size)
        with self._lock:
            self._subs.append(sub)
        gauge_inc("frogtable_live_subscribers")
        sub._push(Ping(data=self.greeting))
        logger.debug(f"[Broadcast] New subscriber ({self.subscriber_count} live)")
        return sub

    def publish(self, event: Union[Ping, QueryUpdated]) -> int:
        """Deliver `event` to every live subscriber; returns how many received it."""
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            if sub._push(event):
                counter_inc("frogtable_events_dropped_total")
        counter_inc("frogtable_events_published_total", {"event": event.eventType})
        return len(subs)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub not in self._subs:
                return
            self._subs.remove(sub)
        gauge_dec("frogtable_live_subscribers")
