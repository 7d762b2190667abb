"""Ordered progress channel between a scheduler run and its consumer.

The channel has many producers (one per in-flight probe task) and exactly
one logical consumer. The batch driver awaits events; the interactive
driver polls without blocking on every UI tick.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from dnstest.types.aliases import DoneEvent, ProgressEvent

__all__ = ["ProgressChannel"]


class ProgressChannel:
    """Unbounded FIFO of progress events.

    Sending never blocks, so producers cannot be slowed down by a consumer
    that only polls at UI refresh rate. The channel does not police sends
    after DoneEvent; the scheduler never performs them.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._finished: bool = False

    def send(self, event: ProgressEvent) -> None:
        """Enqueue an event without blocking."""
        self._queue.put_nowait(event)

    @property
    def finished(self) -> bool:
        """True once the consumer has taken DoneEvent off the channel."""
        return self._finished

    def try_receive(self) -> ProgressEvent | None:
        """Take the next event if one is pending, otherwise return None."""
        try:
            event = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        self._observe(event)
        return event

    def drain(self) -> list[ProgressEvent]:
        """Take every event currently pending, in order, without blocking."""
        events: list[ProgressEvent] = []
        while (event := self.try_receive()) is not None:
            events.append(event)
        return events

    async def receive(self) -> ProgressEvent:
        """Wait for the next event."""
        event = await self._queue.get()
        self._observe(event)
        return event

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        """Yield events up to, but not including, DoneEvent."""
        while not self._finished:
            event = await self.receive()
            if isinstance(event, DoneEvent):
                return
            yield event

    def _observe(self, event: ProgressEvent) -> None:
        if isinstance(event, DoneEvent):
            self._finished = True
