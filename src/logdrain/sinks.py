from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_exponential

from logdrain import metrics
from logdrain.config import Settings
from logdrain.errors import SinkDeliveryError
from logdrain.metrics import COUNTERS, Counters
from logdrain.records import LogRecord

logger = logging.getLogger(__name__)


class LogSink(ABC):
    """
    A downstream log backend.

    The controller only ever calls these three coroutines. How a sink batches,
    authenticates and retries is its own business; ``deliver`` either returns
    or raises, it never takes the process down.
    """
    name: str = "sink"
    # True when the sink adds its own dropped records to sink_delivery_failed
    counts_own_failures: bool = False

    async def init(self) -> None:
        """One-time startup (clients, sessions). Failing here is fatal."""

    @abstractmethod
    async def deliver(self, record: LogRecord) -> None:
        ...

    async def close(self) -> None:
        pass


class BufferedSink(LogSink):
    """
    Collects records and ships them in batches, either when ``batch_size`` is
    reached or every ``flush_interval`` seconds from a background task.

    Blocking client calls (boto3, requests) go through ``asyncio.to_thread``,
    retried by tenacity with exponential backoff. A batch that still fails
    after ``max_retries`` is dropped, and every record in it is counted as a
    delivery failure for this sink.
    """
    counts_own_failures = True

    def __init__(
        self,
        *,
        batch_size: int = 100,
        flush_interval: float = 1.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        max_backoff: float = 30.0,
        counters: Counters = COUNTERS,
    ):
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.counters = counters
        self._buffer: List[LogRecord] = []
        self._lock: Optional[asyncio.Lock] = None
        self._flusher: Optional[asyncio.Task] = None

    @abstractmethod
    def open(self) -> None:
        """Create the backend client. Runs in a worker thread."""

    @abstractmethod
    def ship(self, batch: List[LogRecord]) -> None:
        """Send one batch. Runs in a worker thread; raise on failure."""

    async def init(self) -> None:
        self._lock = asyncio.Lock()
        await asyncio.to_thread(self.open)
        if self.flush_interval > 0:
            self._flusher = asyncio.create_task(self._flush_loop())
        logger.info("sink %s ready", self.name)

    async def deliver(self, record: LogRecord) -> None:
        self._buffer.append(record)
        if len(self._buffer) >= self.batch_size:
            # the batch leaves the buffer once flush starts; a cancelled
            # caller must not cut it loose from its outcome
            await asyncio.shield(self._spawn_flush())

    def _spawn_flush(self) -> asyncio.Task:
        task = asyncio.ensure_future(self.flush())
        task.add_done_callback(_retrieve)
        return task

    async def flush(self) -> None:
        if self._lock is None:
            raise SinkDeliveryError(self.name, "sink used before init()", records=len(self._buffer))
        async with self._lock:
            if not self._buffer:
                return
            batch, self._buffer = self._buffer, []
            await asyncio.to_thread(self._ship_with_retry, batch)

    def _ship_with_retry(self, batch: List[LogRecord]) -> None:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff, max=self.max_backoff),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            retryer(self.ship, batch)
        except Exception as e:
            logger.error(
                "sink %s dropping %d record(s) after %d attempt(s): %s",
                self.name, len(batch), self.max_retries + 1, e,
            )
            self.counters.inc(metrics.SINK_DELIVERY_FAILED, len(batch), sink=self.name)
            raise SinkDeliveryError(self.name, str(e), records=len(batch), counted=True) from e
        logger.debug("sink %s shipped %d record(s)", self.name, len(batch))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "sink %s attempt %d failed: %s; retrying in %.2fs",
            self.name,
            retry_state.attempt_number,
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
        )

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except SinkDeliveryError as e:
                # logged and counted by _ship_with_retry
                logger.debug("background flush failed: %s", e)

    async def close(self) -> None:
        if self._flusher is not None:
            self._flusher.cancel()
            try:
                await self._flusher
            except asyncio.CancelledError:
                pass
            self._flusher = None
        if self._lock is not None and self._buffer:
            await self.flush()


def _retrieve(task: asyncio.Task) -> None:
    # outcome is already logged and counted; mark it seen for asyncio
    if not task.cancelled():
        task.exception()


def build_sinks(settings: Settings, counters: Counters = COUNTERS) -> List[LogSink]:
    """Construct every sink the settings enable."""
    opts = dict(
        batch_size=settings.sink_batch_size,
        flush_interval=settings.sink_flush_interval,
        max_retries=settings.sink_max_retries,
        counters=counters,
    )
    out: List[LogSink] = []

    if settings.enable_cloudwatch:
        from logdrain.cloudwatch_sink import CloudWatchSink

        out.append(CloudWatchSink(
            log_group=settings.cloudwatch_log_group,
            region=settings.cloudwatch_region,
            **opts,
        ))
        logger.debug("added cloudwatch sink")

    if settings.enable_loki:
        from logdrain.loki_sink import LokiSink

        out.append(LokiSink(
            url=settings.loki_url,
            user=settings.loki_user,
            password=settings.loki_password,
            **opts,
        ))
        logger.debug("added loki sink")

    return out
