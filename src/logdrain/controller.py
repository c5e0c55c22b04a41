from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Sequence

from logdrain import metrics
from logdrain.errors import SinkDeliveryError, SinkInitError
from logdrain.ingest_queue import IngestionQueue
from logdrain.metrics import COUNTERS, Counters
from logdrain.records import LogRecord
from logdrain.sinks import LogSink

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"


class Controller:
    """
    Owns the consumer end of the ingestion queue and the registered sinks.

    Every record goes to every sink, concurrently. A sink that fails is logged
    and counted, and keeps getting records: there is no ejection, and no retry
    beyond what the sink does itself.
    """
    def __init__(
        self,
        queue: IngestionQueue,
        sinks: Sequence[LogSink],
        *,
        sink_timeout: Optional[float] = None,
        counters: Counters = COUNTERS,
    ):
        self.queue = queue
        self.sinks: List[LogSink] = list(sinks)
        self.sink_timeout = sink_timeout or None
        self.counters = counters
        self.state = ControllerState.UNINITIALIZED
        self._task: Optional[asyncio.Task] = None

    async def init(self) -> None:
        if self.state is not ControllerState.UNINITIALIZED:
            raise RuntimeError(f"controller already {self.state.value}")
        for sink in self.sinks:
            try:
                await sink.init()
            except Exception as e:
                logger.critical("sink %s failed to initialize: %s", sink.name, e)
                raise SinkInitError(sink.name, e) from e
        self.state = ControllerState.INITIALIZED
        logger.info("controller initialized with %d sink(s): %s", len(self.sinks), [s.name for s in self.sinks])

    async def run(self) -> None:
        if self.state is not ControllerState.INITIALIZED:
            raise RuntimeError(f"controller cannot run from state {self.state.value}")
        self.state = ControllerState.RUNNING
        try:
            while True:
                record = await self.queue.get()
                if record is None:
                    logger.info("ingestion queue closed, dispatch loop exiting")
                    break
                await self.dispatch(record)
        finally:
            self.state = ControllerState.STOPPED
            # nobody is consuming any more
            self.queue.close()

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name="logdrain-controller")
        return self._task

    async def dispatch(self, record: LogRecord) -> List[str]:
        """Hand one record to every sink; returns the names of those that failed."""
        results = await asyncio.gather(*(self._deliver(sink, record) for sink in self.sinks))
        return [name for name in results if name is not None]

    async def _deliver(self, sink: LogSink, record: LogRecord) -> Optional[str]:
        try:
            if self.sink_timeout:
                await asyncio.wait_for(sink.deliver(record), timeout=self.sink_timeout)
            else:
                await sink.deliver(record)
            return None
        except asyncio.TimeoutError:
            logger.error("sink %s timed out after %.1fs", sink.name, self.sink_timeout)
            # a sink that counts its own failures still owns the record
            lost, counted = 1, sink.counts_own_failures
        except SinkDeliveryError as e:
            logger.error("sink %s failed delivering %s record: %s", sink.name, record.source, e)
            lost, counted = e.records, e.counted
        except Exception as e:
            logger.error("sink %s failed delivering %s record: %s", sink.name, record.source, e)
            lost, counted = 1, False
        if not counted:
            self.counters.inc(metrics.SINK_DELIVERY_FAILED, lost, sink=sink.name)
        return sink.name

    async def shutdown(self, timeout: float = 10.0) -> None:
        self.queue.close()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("dispatch loop did not finish in %.1fs, %d record(s) undelivered", timeout, self.queue.qsize())
            self._task = None
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.error("sink %s failed to close: %s", sink.name, e)
