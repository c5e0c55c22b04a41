from __future__ import annotations

import asyncio
from typing import Optional

from logdrain.errors import QueueClosedError
from logdrain.records import LogRecord

_CLOSED = object()


class IngestionQueue:
    """
    Unbounded FIFO between the request handlers (many producers) and the
    controller (one consumer). Producers never wait on it: HTTP ingestion must
    not slow down because a sink is slow, so memory grows during a sink outage.
    """
    def __init__(self):
        self._q: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._q.qsize() - (1 if self._closed else 0)

    def enqueue(self, record: LogRecord) -> None:
        if self._closed:
            raise QueueClosedError("ingestion queue is closed")
        self._q.put_nowait(record)

    async def get(self) -> Optional[LogRecord]:
        """Next record, or None once the queue has been closed."""
        item = await self._q.get()
        if item is _CLOSED:
            # leave the marker for any later get()
            self._q.put_nowait(_CLOSED)
            return None
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._q.put_nowait(_CLOSED)
