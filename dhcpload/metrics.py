from __future__ import annotations

import collections
import logging
import threading
import time
from dataclasses import dataclass

import pandas as pd
from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

LOGGER = logging.getLogger("dhcpload.metrics")

DISCOVERS_SENT = "discover_packets_sent"
REQUESTS_SENT = "request_packets_sent"
RELEASES_SENT = "release_packets_sent"
RELEASE_FAILURES = "release_send_failures"
WORKER_SETUP_FAILURES = "worker_setup_failures"
TRANSACTIONS = "transactions"

DISCOVER_OFFER_LATENCY = "discover_offer_latency"
REQUEST_ACK_LATENCY = "request_ack_latency"

# Milliseconds; the top buckets bracket the default 2s transaction deadline.
LATENCY_BUCKETS_MS = (1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2000.0, 5000.0)

# Raw samples kept for the end-of-run percentiles; older ones roll off, the histograms keep counting.
SAMPLE_LOG_LIMIT = 100_000

COUNTER_HELP: dict[str, str] = {
    DISCOVERS_SENT: "Number of discover packets sent",
    REQUESTS_SENT: "Number of request packets sent",
    RELEASES_SENT: "Number of release packets sent",
    RELEASE_FAILURES: "Number of release packets that could not be sent",
    WORKER_SETUP_FAILURES: "Number of workers that exited because their transport could not be opened",
}

HISTOGRAM_HELP: dict[str, str] = {
    DISCOVER_OFFER_LATENCY: "DISCOVER-OFFER latency in milliseconds.",
    REQUEST_ACK_LATENCY: "REQUEST-ACK latency in milliseconds.",
}


@dataclass(frozen=True)
class LatencySample:
    phase: str
    latency_ms: float
    observed_ts: float


class MetricsSink:
    """Process-wide counters and latency histograms shared by every worker.

    The prometheus collectors lock internally; the raw sample log used for the
    end-of-run summary is guarded by its own lock and holds at most
    ``sample_limit`` of the most recent observations.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        buckets: tuple[float, ...] = LATENCY_BUCKETS_MS,
        sample_limit: int = SAMPLE_LOG_LIMIT,
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self._counters = {
            name: Counter(name=name, documentation=doc, registry=self.registry)
            for name, doc in COUNTER_HELP.items()
        }
        self._histograms = {
            name: Histogram(name=name, documentation=doc, buckets=buckets, registry=self.registry)
            for name, doc in HISTOGRAM_HELP.items()
        }
        self._transactions = Counter(
            name=TRANSACTIONS,
            documentation="Completed transaction attempts by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )
        self._samples_lock = threading.Lock()
        self._samples: collections.deque[LatencySample] = collections.deque(maxlen=sample_limit)
        self._outcomes: collections.Counter[str] = collections.Counter()

    def increment_counter(self, name: str, amount: float = 1.0) -> None:
        self._counters[name].inc(amount)

    def observe_latency(self, name: str, value_ms: float) -> None:
        histogram = self._histograms[name]
        histogram.observe(value_ms)
        with self._samples_lock:
            self._samples.append(LatencySample(name, float(value_ms), time.time()))

    def record_outcome(self, outcome: str) -> None:
        self._transactions.labels(outcome=outcome).inc()
        with self._samples_lock:
            self._outcomes[outcome] += 1

    def counter_value(self, name: str) -> float:
        if name not in self._counters:
            raise KeyError(name)
        return self.registry.get_sample_value(f"{name}_total") or 0.0

    def observation_count(self, name: str) -> int:
        if name not in self._histograms:
            raise KeyError(name)
        return int(self.registry.get_sample_value(f"{name}_count") or 0)

    def outcome_counts(self) -> dict[str, int]:
        with self._samples_lock:
            return dict(self._outcomes)

    def latency_samples(self, name: str) -> list[float]:
        if name not in self._histograms:
            raise KeyError(name)
        with self._samples_lock:
            return [sample.latency_ms for sample in self._samples if sample.phase == name]

    def build_dataframe(self) -> pd.DataFrame:
        with self._samples_lock:
            rows = [
                {
                    "phase": sample.phase,
                    "latency_ms": sample.latency_ms,
                    "observed_ts": sample.observed_ts,
                }
                for sample in self._samples
            ]
        if not rows:
            return pd.DataFrame(columns=["phase", "latency_ms", "observed_ts"])
        return pd.DataFrame(rows)


def start_exporter(sink: MetricsSink, port: int, addr: str = "0.0.0.0") -> None:
    start_http_server(port, addr=addr, registry=sink.registry)
    LOGGER.info("Serving metrics on http://%s:%d/metrics", addr, port)


__all__ = [
    "DISCOVERS_SENT",
    "DISCOVER_OFFER_LATENCY",
    "LATENCY_BUCKETS_MS",
    "SAMPLE_LOG_LIMIT",
    "MetricsSink",
    "RELEASES_SENT",
    "RELEASE_FAILURES",
    "REQUESTS_SENT",
    "REQUEST_ACK_LATENCY",
    "WORKER_SETUP_FAILURES",
    "start_exporter",
]
