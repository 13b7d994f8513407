"""Event Multiplexer: the single bounded output channel of a stream."""

import asyncio
from typing import AsyncIterator, Protocol

from ..logging_config import get_logger
from ..models import LogEvent, PodInfo, StreamEvent
from .roster import PodRoster

logger = get_logger(__name__)

_CLOSED = object()


class IEventSink(Protocol):
    """Where tailers deliver log lines."""

    def push_log(self, event: LogEvent) -> bool:
        """Try to enqueue a log event without blocking. Returns False if dropped."""
        ...


class EventMultiplexer:
    """
    Bounded FIFO shared by all tailers of a stream.

    Pushes never block: when the channel is full the event is dropped. Besides
    log lines it carries periodic pod roster snapshots and keepalives.
    """

    def __init__(
        self,
        capacity: int = 1000,
        roster: PodRoster | None = None,
        snapshot_interval: float = 2.0,
    ):
        self._capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._roster = roster
        self._snapshot_interval = snapshot_interval
        self._snapshot_task: asyncio.Task | None = None
        self._closed = False
        self._drained = False
        self._dropped = 0

    @property
    def dropped(self) -> int:
        """Number of events discarded because the channel was full."""
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: StreamEvent) -> bool:
        """Enqueue an event if there is room; never waits."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped == 1 or self._dropped % 100 == 0:
                logger.warning(
                    "Stream channel full (capacity %d), %d events dropped so far",
                    self._capacity, self._dropped,
                )
            else:
                logger.debug("Stream channel full, dropping %s event", event.type.value)
            return False
        return True

    def push_log(self, event: LogEvent) -> bool:
        return self.push(StreamEvent.for_log(event))

    def publish_pods(self, pods: list[PodInfo]) -> bool:
        return self.push(StreamEvent.for_pods(pods))

    def send_keepalive(self) -> bool:
        return self.push(StreamEvent.ping())

    async def publish_snapshot(self) -> bool:
        """Push the current pod roster."""
        if self._roster is None:
            return False
        return self.publish_pods(await self._roster.snapshot())

    def start(self) -> None:
        """Start periodic roster snapshots."""
        if self._roster is not None and self._snapshot_task is None:
            self._snapshot_task = asyncio.create_task(self._snapshot_loop())

    async def _snapshot_loop(self) -> None:
        while True:
            await asyncio.sleep(self._snapshot_interval)
            await self.publish_snapshot()

    async def close(self) -> None:
        """Stop snapshots and close the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._snapshot_task:
            self._snapshot_task.cancel()
            try:
                await self._snapshot_task
            except asyncio.CancelledError:
                pass

        # The end marker must fit even when the consumer is gone
        if self._queue.full():
            self._queue.get_nowait()
            self._dropped += 1
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Consume events in FIFO order until the channel is closed."""
        while not self._drained:
            item = await self._queue.get()
            if item is _CLOSED:
                self._drained = True
                return
            yield item
