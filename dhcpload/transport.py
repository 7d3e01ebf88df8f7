from __future__ import annotations

import logging
import select
import time
from typing import Protocol

from scapy.config import conf
from scapy.error import Scapy_Exception
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether

from .identity import Identity

LOGGER = logging.getLogger("dhcpload.transport")

CLIENT_PORT = 68
SERVER_PORT = 67
BROADCAST_ADDR = "255.255.255.255"
BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"
BROADCAST_TARGET: tuple[str, int] = (BROADCAST_ADDR, SERVER_PORT)


class TransportError(Exception):
    """Raised when the datagram channel cannot be opened, bound or used."""


class TransportBinding(Protocol):
    def bind(self, identity: Identity) -> None: ...

    def send(self, payload: bytes, target: tuple[str, int]) -> None: ...

    def receive(self, deadline: float) -> bytes | None: ...

    def close(self) -> None: ...


class RawTransport:
    """Broadcast-capable layer-2 channel for one worker, keyed to one identity at a time."""

    def __init__(
        self,
        interface: str,
        client_port: int = CLIENT_PORT,
    ) -> None:
        self._interface = interface
        self._client_port = client_port
        self._identity: Identity | None = None
        try:
            self._socket = self._open(interface, f"udp and dst port {client_port}")
        except (OSError, Scapy_Exception) as exc:
            raise TransportError(
                f"unable to open a broadcasting socket on {interface}: {exc}"
            ) from exc
        LOGGER.debug("Opened raw socket on %s", interface)

    @staticmethod
    def _open(interface: str, bpf_filter: str):
        try:
            return conf.L2socket(iface=interface, filter=bpf_filter)
        except Scapy_Exception as exc:
            # Compiling a filter needs libpcap or tcpdump; receive() still checks the port.
            LOGGER.warning("BPF filter %r unavailable on %s: %s", bpf_filter, interface, exc)
            return conf.L2socket(iface=interface)

    @property
    def identity(self) -> Identity | None:
        return self._identity

    def bind(self, identity: Identity) -> None:
        self._identity = identity

    def send(self, payload: bytes, target: tuple[str, int]) -> None:
        if self._identity is None:
            raise TransportError("transport is not bound to a hardware address")
        address, port = target
        frame = (
            Ether(src=str(self._identity), dst=BROADCAST_MAC)
            / IP(src="0.0.0.0", dst=address)
            / UDP(sport=self._client_port, dport=port)
            / payload
        )
        try:
            self._socket.send(frame)
        except (OSError, Scapy_Exception) as exc:
            raise TransportError(f"error writing packet to {self._interface}: {exc}") from exc

    def receive(self, deadline: float) -> bytes | None:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            try:
                readable, _, _ = select.select([self._socket], [], [], remaining)
                if not readable:
                    return None
                frame = self._socket.recv()
            except (OSError, Scapy_Exception) as exc:
                raise TransportError(f"error reading from {self._interface}: {exc}") from exc
            if frame is None or UDP not in frame:
                continue
            if frame[UDP].dport != self._client_port:
                continue
            return bytes(frame[UDP].payload)

    def close(self) -> None:
        self._socket.close()


__all__ = [
    "BROADCAST_TARGET",
    "CLIENT_PORT",
    "SERVER_PORT",
    "RawTransport",
    "TransportBinding",
    "TransportError",
]
