from __future__ import annotations

from dataclasses import dataclass, field

import pandas as pd

from .engine import EngineStatistics
from .metrics import (
    DISCOVERS_SENT,
    DISCOVER_OFFER_LATENCY,
    RELEASES_SENT,
    RELEASE_FAILURES,
    REQUESTS_SENT,
    REQUEST_ACK_LATENCY,
    WORKER_SETUP_FAILURES,
    MetricsSink,
)

SUMMARY_COUNTERS = (
    DISCOVERS_SENT,
    REQUESTS_SENT,
    RELEASES_SENT,
    RELEASE_FAILURES,
    WORKER_SETUP_FAILURES,
)
SUMMARY_PHASES = (DISCOVER_OFFER_LATENCY, REQUEST_ACK_LATENCY)


@dataclass(frozen=True)
class PhaseSummary:
    count: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p99_ms: float
    max_ms: float


@dataclass
class RunSummary:
    duration_s: float
    succeeded: int
    throughput_per_second: float
    counters: dict[str, int] = field(default_factory=dict)
    outcomes: dict[str, int] = field(default_factory=dict)
    phases: dict[str, PhaseSummary] = field(default_factory=dict)


def summarise(sink: MetricsSink, statistics: EngineStatistics) -> RunSummary:
    frame = sink.build_dataframe()
    phases: dict[str, PhaseSummary] = {}
    for phase in SUMMARY_PHASES:
        latencies = pd.to_numeric(frame.loc[frame["phase"] == phase, "latency_ms"])
        if latencies.empty:
            continue
        phases[phase] = PhaseSummary(
            count=sink.observation_count(phase),
            mean_ms=float(latencies.mean()),
            p50_ms=float(latencies.quantile(0.5)),
            p90_ms=float(latencies.quantile(0.9)),
            p99_ms=float(latencies.quantile(0.99)),
            max_ms=float(latencies.max()),
        )

    return RunSummary(
        duration_s=statistics.duration_s,
        succeeded=statistics.succeeded,
        throughput_per_second=statistics.throughput_per_second,
        counters={name: int(sink.counter_value(name)) for name in SUMMARY_COUNTERS},
        outcomes=sink.outcome_counts(),
        phases=phases,
    )


def format_summary(summary: RunSummary) -> str:
    lines = [
        f"Run duration: {summary.duration_s:.2f}s",
        f"Successful transactions: {summary.succeeded} ({summary.throughput_per_second:.2f}/s)",
        "Counters:",
    ]
    lines.extend(f"  {name}: {summary.counters[name]}" for name in sorted(summary.counters))

    lines.append("Outcomes:")
    if not summary.outcomes:
        lines.append("  <empty>")
    lines.extend(f"  {outcome}: {summary.outcomes[outcome]}" for outcome in sorted(summary.outcomes))

    lines.append("Latency (ms):")
    if not summary.phases:
        lines.append("  <no samples>")
    for phase in SUMMARY_PHASES:
        stats = summary.phases.get(phase)
        if stats is None:
            continue
        lines.append(
            f"  {phase}: n={stats.count} mean={stats.mean_ms:.1f} p50={stats.p50_ms:.1f} "
            f"p90={stats.p90_ms:.1f} p99={stats.p99_ms:.1f} max={stats.max_ms:.1f}"
        )
    return "\n".join(lines)


__all__ = ["PhaseSummary", "RunSummary", "format_summary", "summarise"]
