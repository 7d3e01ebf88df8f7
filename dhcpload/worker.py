from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from .identity import Identity, RandomSourceError, generate_identity
from .metrics import WORKER_SETUP_FAILURES, MetricsSink
from .ratelimit import TokenBucketLimiter
from .session import DEFAULT_DEADLINE_S, FailureReason, Session
from .transport import BROADCAST_TARGET, TransportBinding, TransportError

LOGGER = logging.getLogger("dhcpload.worker")

RANDOM_SOURCE_ERROR = "random_source_error"
TRANSPORT_ERROR_REPORT_EVERY = 10

TransportFactory = Callable[[], TransportBinding]


@dataclass
class WorkerStatistics:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    setup_failed: bool = False


class Worker:
    """Runs transactions back to back until the shared stop event fires."""

    def __init__(
        self,
        index: int,
        transport_factory: TransportFactory,
        limiter: TokenBucketLimiter,
        sink: MetricsSink,
        stop_event: threading.Event,
        deadline_s: float = DEFAULT_DEADLINE_S,
        identity_factory: Callable[[], Identity] = generate_identity,
        target: tuple[str, int] = BROADCAST_TARGET,
    ) -> None:
        self.index = index
        self._transport_factory = transport_factory
        self._limiter = limiter
        self._sink = sink
        self._stop_event = stop_event
        self._deadline_s = deadline_s
        self._identity_factory = identity_factory
        self._target = target
        self._consecutive_transport_errors = 0
        self.statistics = WorkerStatistics()

    def run(self) -> WorkerStatistics:
        try:
            transport = self._transport_factory()
        except TransportError:
            LOGGER.exception("worker %d could not open its transport", self.index)
            self._sink.increment_counter(WORKER_SETUP_FAILURES)
            self.statistics.setup_failed = True
            return self.statistics

        with contextlib.closing(transport):
            while not self._stop_event.is_set():
                if not self._limiter.acquire(self._stop_event):
                    break
                self.run_once(transport)

        LOGGER.debug(
            "worker %d stopped after %d transaction(s)",
            self.index,
            self.statistics.attempted,
        )
        return self.statistics

    def run_once(self, transport: TransportBinding) -> str:
        self.statistics.attempted += 1
        outcome = self._attempt(transport)
        self._sink.record_outcome(outcome)
        if outcome == "success":
            self.statistics.succeeded += 1
        else:
            self.statistics.failed += 1
        self._track_transport_errors(outcome)
        return outcome

    def _attempt(self, transport: TransportBinding) -> str:
        try:
            identity = self._identity_factory()
        except RandomSourceError as exc:
            LOGGER.warning("worker %d could not generate a hardware address: %s", self.index, exc)
            return RANDOM_SOURCE_ERROR

        try:
            transport.bind(identity)
        except TransportError as exc:
            LOGGER.info("worker %d could not bind %s: %s", self.index, identity, exc)
            return FailureReason.TRANSPORT_ERROR.value

        session = Session(
            transport,
            identity,
            self._sink,
            deadline_s=self._deadline_s,
            target=self._target,
        )
        return session.run().outcome

    def _track_transport_errors(self, outcome: str) -> None:
        if outcome != FailureReason.TRANSPORT_ERROR.value:
            self._consecutive_transport_errors = 0
            return
        self._consecutive_transport_errors += 1
        count = self._consecutive_transport_errors
        if count == 1 or count % TRANSPORT_ERROR_REPORT_EVERY == 0:
            LOGGER.warning(
                "worker %d has hit %d consecutive transport error(s)",
                self.index,
                count,
            )


__all__ = [
    "RANDOM_SOURCE_ERROR",
    "TransportFactory",
    "Worker",
    "WorkerStatistics",
]
