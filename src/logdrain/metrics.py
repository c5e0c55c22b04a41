from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable, DefaultDict, Dict, List, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

# Counter names exposed by the drain core
SIGNATURE_MISSING = "signature_missing"
SIGNATURE_MALFORMED = "signature_malformed"
SIGNATURE_MISMATCH = "signature_mismatch"
BAD_UTF8 = "bad_utf8"
PAYLOAD_DECODE_FAILED = "payload_decode_failed"
ELEMENT_DECODE_FAILED = "element_decode_failed"
RECORDS_ENQUEUED = "records_enqueued"
ENQUEUE_FAILED = "enqueue_failed"
DELIVERY_FAILED = "delivery_failed"
SINK_DELIVERY_FAILED = "sink_delivery_failed"

_Key = Tuple[str, Tuple[Tuple[str, str], ...]]


def _key_name(key: _Key) -> str:
    name, labels = key
    if not labels:
        return name
    inner = ",".join(f"{k}={v}" for k, v in labels)
    return f"{name}{{{inner}}}"


class Counters:
    """
    Monotonic in-process counters, optionally labelled.
    Safe to bump from request handlers, the dispatch loop and sink threads.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._values: DefaultDict[_Key, int] = defaultdict(int)

    def inc(self, name: str, amount: int = 1, **labels: str) -> None:
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._values[key] += amount

    def get(self, name: str, **labels: str) -> int:
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            return self._values.get(key, 0)

    def items(self) -> List[Tuple[_Key, int]]:
        with self._lock:
            return sorted(self._values.items())

    def snapshot(self, prefix: str = "") -> Dict[str, int]:
        out: Dict[str, int] = {}
        for key, val in self.items():
            name = _key_name(key)
            out[f"{prefix}_{name}" if prefix else name] = val
        return out

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


COUNTERS = Counters()


# ----------------------------
# Prometheus exposition
# ----------------------------
class CountersCollector:
    """
    Exposes a ``Counters`` instance to a prometheus_client registry.

    Every counter becomes ``<prefix>_<name>_total``; labelled counters keep
    their labels. ``queue_depth`` is read at scrape time when given.
    """
    def __init__(self, counters: Counters, prefix: str = "", queue_depth: Optional[Callable[[], int]] = None):
        self.counters = counters
        self.prefix = prefix
        self.queue_depth = queue_depth

    def _name(self, name: str) -> str:
        return f"{self.prefix}_{name}" if self.prefix else name

    def collect(self):
        items = self.counters.items()

        families: Dict[str, CounterMetricFamily] = {}
        for (name, labels), val in items:
            fam = families.get(name)
            if fam is None:
                fam = CounterMetricFamily(
                    self._name(name),
                    f"Drain counter {name}",
                    labels=[k for k, _ in labels],
                )
                families[name] = fam
            fam.add_metric([v for _, v in labels], val)
        yield from families.values()

        if self.queue_depth is not None:
            yield GaugeMetricFamily(
                self._name("queue_depth"),
                "Records waiting in the ingestion queue",
                value=self.queue_depth(),
            )


class HttpMetrics:
    """Request count and latency, labelled by route template rather than raw path."""

    def __init__(self, registry: CollectorRegistry, prefix: str = ""):
        base = f"{prefix}_http_requests" if prefix else "http_requests"
        self.requests = Counter(
            base,
            "HTTP requests served",
            ["method", "path", "status"],
            registry=registry,
        )
        self.duration = Histogram(
            f"{base}_duration_seconds",
            "HTTP request latency",
            ["method", "path"],
            registry=registry,
        )

    def observe(self, method: str, path: str, status: int, seconds: float) -> None:
        self.requests.labels(method, path, str(status)).inc()
        self.duration.labels(method, path).observe(seconds)


def build_registry(counters: Counters, prefix: str = "", queue_depth: Optional[Callable[[], int]] = None):
    """A fresh registry holding the drain counters; returns it with its HTTP metrics."""
    registry = CollectorRegistry()
    registry.register(CountersCollector(counters, prefix, queue_depth))
    return registry, HttpMetrics(registry, prefix)
