"""
In-memory progress channel keyed by thread id.

Each thread keeps a bounded replay buffer for its current run; a new run
clears it. Subscribers get the buffer first, then live events, until they
unsubscribe. Heartbeats go to live subscribers only.
"""

import asyncio
import logging
from collections import deque

from codecraft.models.progress import Heartbeat, ProgressEvent

logger = logging.getLogger("codecraft.progress_bus")

TERMINAL_TYPES = frozenset({"generation_completed", "generation_failed"})


class Subscription:
    def __init__(self, bus: "ProgressBus", thread_id: str, replay: list[ProgressEvent], maxsize: int):
        self.bus = bus
        self.thread_id = thread_id
        # bounded like the replay buffer; a stalled reader loses its oldest events
        self.queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False
        for event in replay:
            self.offer(event)

    def offer(self, event: ProgressEvent) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1:
                logger.warning("[progress_bus] slow subscriber on %s, dropping oldest events", self.thread_id)
        self.queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> ProgressEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def drain(self) -> list[ProgressEvent]:
        out = []
        while not self.queue.empty():
            out.append(self.queue.get_nowait())
        return out

    def unsubscribe(self) -> None:
        if not self.closed:
            self.closed = True
            self.bus._remove(self)


class ProgressBus:
    def __init__(self, buffer_size: int = 500):
        self.buffer_size = buffer_size
        self._buffers: dict[str, deque[ProgressEvent]] = {}
        self._subscribers: dict[str, list[Subscription]] = {}
        self._runs: dict[str, int] = {}

    def start_run(self, thread_id: str) -> int:
        """Reset the replay buffer and return the new run number."""
        self._buffers[thread_id] = deque(maxlen=self.buffer_size)
        self._runs[thread_id] = self._runs.get(thread_id, 0) + 1
        return self._runs[thread_id]

    def publish(self, thread_id: str, event: ProgressEvent) -> None:
        if not isinstance(event, Heartbeat):
            buffer = self._buffers.setdefault(thread_id, deque(maxlen=self.buffer_size))
            buffer.append(event)
        for sub in list(self._subscribers.get(thread_id, ())):
            sub.offer(event)

    def subscribe(self, thread_id: str) -> Subscription:
        sub = Subscription(self, thread_id, list(self._buffers.get(thread_id, ())), self.buffer_size)
        self._subscribers.setdefault(thread_id, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.thread_id, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscribers.pop(sub.thread_id, None)

    def buffered(self, thread_id: str) -> list[ProgressEvent]:
        return list(self._buffers.get(thread_id, ()))

    def subscriber_count(self, thread_id: str) -> int:
        return len(self._subscribers.get(thread_id, ()))

    async def run_heartbeats(self, thread_id: str, interval: float) -> None:
        """Publish heartbeats until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.publish(thread_id, Heartbeat())
