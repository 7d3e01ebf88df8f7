from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from scapy.packet import Packet

from . import codec
from .codec import LeaseOffer
from .identity import Identity
from .metrics import (
    DISCOVERS_SENT,
    DISCOVER_OFFER_LATENCY,
    RELEASES_SENT,
    RELEASE_FAILURES,
    REQUESTS_SENT,
    REQUEST_ACK_LATENCY,
    MetricsSink,
)
from .transport import BROADCAST_TARGET, TransportBinding, TransportError

LOGGER = logging.getLogger("dhcpload.session")

DEFAULT_DEADLINE_S = 2.0


class SessionState(enum.Enum):
    INIT = "init"
    DISCOVER_SENT = "discover_sent"
    OFFER_RECEIVED = "offer_received"
    REQUEST_SENT = "request_sent"
    ACK_RECEIVED = "ack_received"
    RELEASE_SENT = "release_sent"
    FAILED = "failed"


class FailureReason(enum.Enum):
    TIMEOUT = "timeout"
    PROTOCOL_MISMATCH = "protocol_mismatch"
    TRANSPORT_ERROR = "transport_error"


class _SessionFailed(Exception):
    def __init__(self, reason: FailureReason, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason


@dataclass
class SessionResult:
    state: SessionState
    identity: Identity
    xid: int
    reason: FailureReason | None = None
    detail: str | None = None
    lease: LeaseOffer | None = None
    discover_offer_ms: float | None = None
    request_ack_ms: float | None = None
    release_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state in (SessionState.ACK_RECEIVED, SessionState.RELEASE_SENT)

    @property
    def outcome(self) -> str:
        if self.reason is not None:
            return self.reason.value
        return "success"


class Session:
    """One DISCOVER -> OFFER -> REQUEST -> ACK -> RELEASE cycle for a single identity.

    A single deadline, fixed when the Discover goes out, covers everything up
    to the Ack. The transport must already be bound to ``identity``.
    """

    def __init__(
        self,
        transport: TransportBinding,
        identity: Identity,
        sink: MetricsSink,
        deadline_s: float = DEFAULT_DEADLINE_S,
        target: tuple[str, int] = BROADCAST_TARGET,
        clock: Callable[[], float] = time.monotonic,
        xid: int | None = None,
    ) -> None:
        self._transport = transport
        self._identity = identity
        self._sink = sink
        self._deadline_s = deadline_s
        self._target = target
        self._clock = clock
        self.xid = codec.new_xid() if xid is None else xid
        self.state = SessionState.INIT
        self.conversation: list[Packet] = []
        self._result = SessionResult(state=self.state, identity=identity, xid=self.xid)

    def run(self) -> SessionResult:
        try:
            self._negotiate()
        except _SessionFailed as failure:
            self.state = SessionState.FAILED
            self._result.reason = failure.reason
            self._result.detail = str(failure)
            LOGGER.info(
                "Transaction %08x for %s failed: %s (%s)",
                self.xid,
                self._identity,
                failure.reason.value,
                failure,
            )
        else:
            self._release()
        self._result.state = self.state
        return self._result

    def _negotiate(self) -> None:
        deadline = self._clock() + self._deadline_s

        discover = codec.new_discover(self._identity, self.xid)
        offer, latency_ms = self._exchange(
            discover, SessionState.DISCOVER_SENT, DISCOVERS_SENT, "offer", deadline
        )
        self._sink.observe_latency(DISCOVER_OFFER_LATENCY, latency_ms)
        self._result.discover_offer_ms = latency_ms
        self._result.lease = codec.lease_offer(offer)
        self.state = SessionState.OFFER_RECEIVED

        request = codec.new_request_from_offer(offer)
        _, latency_ms = self._exchange(
            request, SessionState.REQUEST_SENT, REQUESTS_SENT, "ack", deadline
        )
        self._sink.observe_latency(REQUEST_ACK_LATENCY, latency_ms)
        self._result.request_ack_ms = latency_ms
        self.state = SessionState.ACK_RECEIVED

    def _exchange(
        self,
        message: Packet,
        sent_state: SessionState,
        sent_counter: str,
        expected: str,
        deadline: float,
    ) -> tuple[Packet, float]:
        started = self._clock()
        try:
            self._transport.send(codec.encode(message), self._target)
        except TransportError as exc:
            raise _SessionFailed(FailureReason.TRANSPORT_ERROR, str(exc)) from exc
        self.conversation.append(message)
        self._sink.increment_counter(sent_counter)
        self.state = sent_state
        LOGGER.debug("%s for MAC: %s", sent_state.value, self._identity)

        reply = self._await_reply(expected, deadline)
        self.conversation.append(reply)
        return reply, (self._clock() - started) * 1000.0

    def _await_reply(self, expected: str, deadline: float) -> Packet:
        while True:
            try:
                data = self._transport.receive(deadline)
            except TransportError as exc:
                raise _SessionFailed(FailureReason.TRANSPORT_ERROR, str(exc)) from exc
            if data is None:
                raise _SessionFailed(
                    FailureReason.TIMEOUT,
                    f"no {expected} within {self._deadline_s:.2f}s",
                )

            reply = codec.decode(data)
            if reply is None or not codec.is_reply_for(reply, self.xid, self._identity):
                continue

            received = codec.message_type(reply)
            if received != expected:
                raise _SessionFailed(
                    FailureReason.PROTOCOL_MISMATCH,
                    f"expected {expected}, got {received}",
                )
            return reply

    def _release(self) -> None:
        lease = self._result.lease
        release = codec.new_release(self._identity, lease.client_addr, lease.server_addr)
        try:
            self._transport.send(codec.encode(release), self._target)
        except TransportError as exc:
            # The lease was acknowledged; only the release is reported as lost.
            self._result.release_error = str(exc)
            self._sink.increment_counter(RELEASE_FAILURES)
            LOGGER.warning(
                "Release for %s (%s) could not be sent: %s",
                self._identity,
                lease.client_addr,
                exc,
            )
            return
        self.conversation.append(release)
        self._sink.increment_counter(RELEASES_SENT)
        self.state = SessionState.RELEASE_SENT
        LOGGER.debug("Released %s for MAC: %s", lease.client_addr, self._identity)


__all__ = [
    "DEFAULT_DEADLINE_S",
    "FailureReason",
    "Session",
    "SessionResult",
    "SessionState",
]
