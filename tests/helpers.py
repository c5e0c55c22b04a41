from __future__ import annotations

import asyncio
import json
from typing import List, Optional

from logdrain.errors import SinkDeliveryError
from logdrain.records import LogRecord
from logdrain.sinks import LogSink

SECRET = "drain-secret"
VERIFY = "verify-token"


class RecordingSink(LogSink):
    """In-memory sink; can be told to fail, hang or fail at init."""

    def __init__(
        self,
        name: str,
        *,
        fail: bool = False,
        delay: float = 0.0,
        gate: Optional[asyncio.Event] = None,
        fail_init: bool = False,
    ):
        self.name = name
        self.fail = fail
        self.delay = delay
        self.gate = gate
        self.fail_init = fail_init
        self.received: List[LogRecord] = []
        self.initialized = False
        self.closed = False

    async def init(self) -> None:
        if self.fail_init:
            raise ConnectionError("backend unreachable")
        self.initialized = True

    async def deliver(self, record: LogRecord) -> None:
        self.received.append(record)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise SinkDeliveryError(self.name, "backend said no")

    async def close(self) -> None:
        self.closed = True


def lambda_event(message: str = "ok", ts: int = 1, **extra) -> dict:
    ev = {"source": "lambda", "message": message, "timestamp": ts}
    ev.update(extra)
    return ev


def body_of(events) -> bytes:
    return json.dumps(events).encode("utf-8")
