from __future__ import annotations

import collections
import time
from typing import Callable, Iterable

import pytest
from scapy.layers.dhcp import BOOTP, DHCP

from dhcpload import codec
from dhcpload.identity import Identity
from dhcpload.metrics import MetricsSink
from dhcpload.transport import TransportError

OFFERED_ADDR = "192.168.1.100"
SERVER_ADDR = "192.168.1.1"

Responder = Callable[[str, BOOTP], Iterable[bytes]]


def build_reply(
    request: BOOTP,
    message_type: str,
    yiaddr: str = OFFERED_ADDR,
    server_id: str = SERVER_ADDR,
    xid: int | None = None,
    chaddr: bytes | None = None,
) -> bytes:
    reply = BOOTP(
        op=2,
        xid=request.xid if xid is None else xid,
        chaddr=chaddr if chaddr is not None else bytes(request.chaddr)[:6],
        yiaddr=yiaddr,
        siaddr=server_id,
        flags=0x8000,
    ) / DHCP(
        options=[
            ("message-type", message_type),
            ("server_id", server_id),
            ("lease_time", 3600),
            "end",
        ]
    )
    return bytes(reply)


def dora_responder(message_type: str, message: BOOTP) -> list[bytes]:
    if message_type == "discover":
        return [build_reply(message, "offer")]
    if message_type == "request":
        return [build_reply(message, "ack")]
    return []


class ScriptedTransport:
    """In-memory transport that answers each sent message through a responder."""

    def __init__(
        self,
        responder: Responder | None = None,
        fail_sends: Iterable[str] = (),
        reply_delay_s: float = 0.0,
    ) -> None:
        self.responder = responder
        self.fail_sends = set(fail_sends)
        self.reply_delay_s = reply_delay_s
        self.bound: list[Identity] = []
        self.sent: list[tuple[str, bytes, tuple[str, int]]] = []
        self.closed = False
        self._inbox: collections.deque[bytes] = collections.deque()

    def bind(self, identity: Identity) -> None:
        self.bound.append(identity)

    def send(self, payload: bytes, target: tuple[str, int]) -> None:
        message = BOOTP(payload)
        message_type = codec.message_type(message)
        if message_type in self.fail_sends:
            raise TransportError(f"{message_type} send refused")
        self.sent.append((message_type, payload, target))
        if self.responder is not None:
            self._inbox.extend(self.responder(message_type, message))

    def receive(self, deadline: float) -> bytes | None:
        now = time.monotonic()
        if self._inbox and now + self.reply_delay_s <= deadline:
            if self.reply_delay_s:
                time.sleep(self.reply_delay_s)
            return self._inbox.popleft()
        if deadline > now:
            time.sleep(deadline - now)
        return None

    def close(self) -> None:
        self.closed = True

    def sent_types(self) -> list[str]:
        return [message_type for message_type, _, _ in self.sent]


@pytest.fixture
def sink() -> MetricsSink:
    return MetricsSink()


@pytest.fixture
def identity() -> Identity:
    return Identity.parse("02:00:5e:10:20:30")
