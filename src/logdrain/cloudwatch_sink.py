from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, DefaultDict, Dict, List, Optional, Set

import boto3
from botocore.exceptions import ClientError

from logdrain.records import LogRecord
from logdrain.sinks import BufferedSink

logger = logging.getLogger(__name__)

# put_log_events limits
MAX_EVENTS_PER_CALL = 10000
MAX_BYTES_PER_CALL = 1048576
EVENT_OVERHEAD_BYTES = 26

# Anything below this is taken to be epoch seconds, not milliseconds
_MS_THRESHOLD = 1_000_000_000_000


def to_millis(ts: int) -> int:
    if 0 < ts < _MS_THRESHOLD:
        return ts * 1000
    return ts


def stream_name(record: LogRecord) -> str:
    if record.project_id:
        return f"{record.project_id}/{record.source}"
    return record.source


def _is_exists(err: ClientError) -> bool:
    return err.response.get("Error", {}).get("Code") == "ResourceAlreadyExistsException"


class CloudWatchSink(BufferedSink):
    """Ships records to one CloudWatch Logs group, one stream per project and source."""

    name = "cloudwatch"

    def __init__(self, *, log_group: str, region: Optional[str] = None, client: Any = None, **kwargs):
        super().__init__(**kwargs)
        self.log_group = log_group
        self.region = region
        self.client = client
        self._streams: Set[str] = set()

    def open(self) -> None:
        if self.client is None:
            # native credential chain: env, profile, instance role
            self.client = boto3.client("logs", region_name=self.region)
        self._ensure_group()

    def _ensure_group(self) -> None:
        groups = self.client.describe_log_groups(logGroupNamePrefix=self.log_group)
        for group in groups.get("logGroups", []):
            if group["logGroupName"] == self.log_group:
                return
        logger.info("creating log group: %s", self.log_group)
        try:
            self.client.create_log_group(logGroupName=self.log_group)
        except ClientError as e:
            if not _is_exists(e):
                raise

    def _ensure_stream(self, stream: str) -> None:
        if stream in self._streams:
            return
        try:
            self.client.create_log_stream(logGroupName=self.log_group, logStreamName=stream)
            logger.info("created log stream: %s in group: %s", stream, self.log_group)
        except ClientError as e:
            if not _is_exists(e):
                raise
        self._streams.add(stream)

    def ship(self, batch: List[LogRecord]) -> None:
        by_stream: DefaultDict[str, List[Dict[str, Any]]] = defaultdict(list)
        for record in batch:
            by_stream[stream_name(record)].append({
                "timestamp": to_millis(record.timestamp),
                "message": record.to_json(),
            })

        for stream, events in by_stream.items():
            self._ensure_stream(stream)
            # CloudWatch rejects out-of-order events within one call
            events.sort(key=lambda ev: ev["timestamp"])
            for chunk in _chunks(events):
                resp = self.client.put_log_events(
                    logGroupName=self.log_group,
                    logStreamName=stream,
                    logEvents=chunk,
                )
                rejected = resp.get("rejectedLogEventsInfo")
                if rejected:
                    logger.warning("cloudwatch rejected events in %s: %s", stream, rejected)


def _chunks(events: List[Dict[str, Any]]):
    chunk: List[Dict[str, Any]] = []
    size = 0
    for ev in events:
        ev_size = len(ev["message"].encode("utf-8")) + EVENT_OVERHEAD_BYTES
        if chunk and (len(chunk) >= MAX_EVENTS_PER_CALL or size + ev_size > MAX_BYTES_PER_CALL):
            yield chunk
            chunk, size = [], 0
        chunk.append(ev)
        size += ev_size
    if chunk:
        yield chunk
