"""
ProgressChannel: one-way stream of ProgressEvents from a running pipeline.

The orchestrator only ever puts; the consumer (an NDJSON response, a test)
iterates until the channel is closed.
"""

import asyncio
from typing import AsyncIterator, Optional

from mediatag.schemas.pipeline import ProgressEvent

_CLOSED = object()


class ProgressChannel:
    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._last_percent = 0.0

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        # Percent never goes backwards for a consumer.
        if event.percent < self._last_percent:
            event = event.model_copy(update={"percent": self._last_percent})
        self._last_percent = event.percent
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self) -> Optional[ProgressEvent]:
        item = await self._queue.get()
        return None if item is _CLOSED else item

    def drain(self) -> list:
        """Everything emitted so far, without waiting. Used after a run has finished."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSED:
                events.append(item)
        return events

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event
