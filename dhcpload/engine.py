from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from .identity import Identity, generate_identity
from .metrics import MetricsSink
from .ratelimit import TokenBucketLimiter
from .session import DEFAULT_DEADLINE_S
from .transport import BROADCAST_TARGET
from .worker import TransportFactory, Worker, WorkerStatistics

LOGGER = logging.getLogger("dhcpload.engine")


@dataclass
class EngineStatistics:
    started_at: float
    finished_at: float
    workers: list[WorkerStatistics] = field(default_factory=list)

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def attempted(self) -> int:
        return sum(stats.attempted for stats in self.workers)

    @property
    def succeeded(self) -> int:
        return sum(stats.succeeded for stats in self.workers)

    @property
    def failed(self) -> int:
        return sum(stats.failed for stats in self.workers)

    @property
    def setup_failures(self) -> int:
        return sum(1 for stats in self.workers if stats.setup_failed)

    @property
    def throughput_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.succeeded / self.duration_s


class LoadEngine:
    """Owns the worker pool: one limiter, one sink and one stop event for the run."""

    def __init__(
        self,
        workers: int,
        limiter: TokenBucketLimiter,
        sink: MetricsSink,
        transport_factory: TransportFactory,
        deadline_s: float = DEFAULT_DEADLINE_S,
        stop_event: threading.Event | None = None,
        identity_factory: Callable[[], Identity] = generate_identity,
        target: tuple[str, int] = BROADCAST_TARGET,
    ) -> None:
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self._stop_event = stop_event or threading.Event()
        self._workers = [
            Worker(
                index=index,
                transport_factory=transport_factory,
                limiter=limiter,
                sink=sink,
                stop_event=self._stop_event,
                deadline_s=deadline_s,
                identity_factory=identity_factory,
                target=target,
            )
            for index in range(workers)
        ]
        self._threads: list[threading.Thread] = []

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def run(self) -> EngineStatistics:
        started_at = time.time()
        LOGGER.info("Starting %d worker(s)", len(self._workers))

        for worker in self._workers:
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker,),
                name=f"dhcpload-worker-{worker.index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        for thread in self._threads:
            thread.join()

        finished_at = time.time()
        LOGGER.info("All workers stopped")
        return EngineStatistics(
            started_at=started_at,
            finished_at=finished_at,
            workers=[worker.statistics for worker in self._workers],
        )

    def stop(self) -> None:
        if not self._stop_event.is_set():
            LOGGER.info("Stopping workers at their next transaction boundary")
        self._stop_event.set()

    @staticmethod
    def _run_worker(worker: Worker) -> None:
        try:
            worker.run()
        except Exception:  # noqa: BLE001
            LOGGER.exception("worker %d crashed", worker.index)


__all__ = ["EngineStatistics", "LoadEngine"]
