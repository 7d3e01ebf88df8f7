from __future__ import annotations

import threading

from conftest import ScriptedTransport, build_reply, dora_responder
from dhcpload.identity import Identity, RandomSourceError, generate_identity
from dhcpload.metrics import DISCOVERS_SENT, WORKER_SETUP_FAILURES, MetricsSink
from dhcpload.ratelimit import TokenBucketLimiter
from dhcpload.transport import TransportError
from dhcpload.worker import RANDOM_SOURCE_ERROR, Worker


def _worker(transport_factory, sink: MetricsSink, stop_event: threading.Event, **kwargs) -> Worker:
    return Worker(
        index=0,
        transport_factory=transport_factory,
        limiter=TokenBucketLimiter(rate=1000, burst=10),
        sink=sink,
        stop_event=stop_event,
        deadline_s=kwargs.pop("deadline_s", 0.5),
        **kwargs,
    )


def test_worker_runs_until_stopped_at_a_transaction_boundary(sink: MetricsSink) -> None:
    stop_event = threading.Event()
    completed: list[str] = []

    def responder(message_type, message):
        if message_type == "request":
            completed.append(message_type)
            if len(completed) == 3:
                stop_event.set()
        return dora_responder(message_type, message)

    transport = ScriptedTransport(responder)
    statistics = _worker(lambda: transport, sink, stop_event).run()

    assert statistics.attempted == 3
    assert statistics.succeeded == 3
    assert transport.sent_types().count("release") == 3
    assert transport.closed
    assert len({identity.octets for identity in transport.bound}) == 3
    assert sink.outcome_counts() == {"success": 3}


def test_stopped_worker_starts_no_transaction(sink: MetricsSink) -> None:
    stop_event = threading.Event()
    stop_event.set()
    transport = ScriptedTransport(dora_responder)

    statistics = _worker(lambda: transport, sink, stop_event).run()

    assert statistics.attempted == 0
    assert transport.sent == []
    assert transport.closed


def test_transport_setup_failure_ends_only_this_worker(sink: MetricsSink) -> None:
    def broken():
        raise TransportError("no such interface")

    statistics = _worker(broken, sink, threading.Event()).run()

    assert statistics.setup_failed
    assert statistics.attempted == 0
    assert sink.counter_value(WORKER_SETUP_FAILURES) == 1


def test_random_source_error_is_contained(sink: MetricsSink) -> None:
    calls = []

    def flaky_identity() -> Identity:
        calls.append(None)
        if len(calls) == 1:
            raise RandomSourceError("entropy pool empty")
        return generate_identity()

    transport = ScriptedTransport(dora_responder)
    worker = _worker(lambda: transport, sink, threading.Event(), identity_factory=flaky_identity)

    assert worker.run_once(transport) == RANDOM_SOURCE_ERROR
    assert worker.run_once(transport) == "success"
    assert worker.statistics.failed == 1
    assert worker.statistics.succeeded == 1
    assert sink.outcome_counts() == {RANDOM_SOURCE_ERROR: 1, "success": 1}
    assert sink.counter_value(DISCOVERS_SENT) == 1


def test_bind_failure_is_a_transport_error(sink: MetricsSink) -> None:
    class UnbindableTransport(ScriptedTransport):
        def bind(self, identity: Identity) -> None:
            raise TransportError("address rejected")

    transport = UnbindableTransport(dora_responder)
    worker = _worker(lambda: transport, sink, threading.Event())

    assert worker.run_once(transport) == "transport_error"
    assert transport.sent == []


def test_failed_transactions_do_not_stop_the_worker(sink: MetricsSink) -> None:
    stop_event = threading.Event()
    discovers: list[str] = []

    def silent_then_stop(message_type, message):
        discovers.append(message_type)
        if len(discovers) == 2:
            stop_event.set()
        return []

    transport = ScriptedTransport(silent_then_stop)
    statistics = _worker(lambda: transport, sink, stop_event, deadline_s=0.02).run()

    assert statistics.attempted == 2
    assert statistics.failed == 2
    assert sink.outcome_counts() == {"timeout": 2}


def test_repeated_transport_errors_are_reported(sink: MetricsSink, caplog) -> None:
    transport = ScriptedTransport(dora_responder, fail_sends={"discover"})
    worker = _worker(lambda: transport, sink, threading.Event())

    with caplog.at_level("WARNING", logger="dhcpload.worker"):
        for _ in range(10):
            worker.run_once(transport)

    warnings = [record for record in caplog.records if "consecutive transport error" in record.message]
    assert len(warnings) == 2
    assert worker.statistics.failed == 10
