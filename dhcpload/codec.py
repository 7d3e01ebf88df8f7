from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

# Scapy reports unknown DHCP options as warnings on every dissect.
logging.getLogger("scapy").setLevel(logging.ERROR)

from scapy.layers.dhcp import BOOTP, DHCP, DHCPTypes
from scapy.packet import Packet

from .identity import Identity

BOOTREQUEST = 1
BOOTREPLY = 2
BROADCAST_FLAG = 0x8000
MIN_BOOTP_SIZE = 300
PARAMETER_REQUEST_LIST = [1, 3, 6, 51, 54]

MESSAGE_TYPES: dict[int, str] = {
    code: name for code, name in DHCPTypes.items() if isinstance(name, str)
}


@dataclass(frozen=True)
class LeaseOffer:
    client_addr: str
    server_addr: str


def new_xid() -> int:
    return secrets.randbits(32)


def new_discover(identity: Identity, xid: int) -> Packet:
    return BOOTP(
        op=BOOTREQUEST,
        chaddr=identity.octets,
        xid=xid,
        flags=BROADCAST_FLAG,
    ) / DHCP(
        options=[
            ("message-type", "discover"),
            ("client_id", b"\x01" + identity.octets),
            ("param_req_list", PARAMETER_REQUEST_LIST),
            "end",
        ]
    )


def new_request_from_offer(offer: Packet) -> Packet:
    lease = lease_offer(offer)
    chaddr = bytes(offer.chaddr)[:6]
    return BOOTP(
        op=BOOTREQUEST,
        chaddr=chaddr,
        xid=offer.xid,
        flags=BROADCAST_FLAG,
    ) / DHCP(
        options=[
            ("message-type", "request"),
            ("client_id", b"\x01" + chaddr),
            ("requested_addr", lease.client_addr),
            ("server_id", lease.server_addr),
            ("param_req_list", PARAMETER_REQUEST_LIST),
            "end",
        ]
    )


def new_release(
    identity: Identity,
    client_addr: str,
    server_addr: str,
    xid: int | None = None,
) -> Packet:
    return BOOTP(
        op=BOOTREQUEST,
        chaddr=identity.octets,
        ciaddr=client_addr,
        xid=new_xid() if xid is None else xid,
    ) / DHCP(
        options=[
            ("message-type", "release"),
            ("client_id", b"\x01" + identity.octets),
            ("server_id", server_addr),
            "end",
        ]
    )


def encode(packet: Packet) -> bytes:
    return bytes(packet).ljust(MIN_BOOTP_SIZE, b"\x00")


def decode(data: bytes) -> Packet | None:
    """Dissect a BOOTP payload, returning ``None`` for anything that is not a DHCP message."""
    try:
        packet = BOOTP(data)
    except Exception:  # noqa: BLE001
        return None
    if not packet.haslayer(DHCP):
        return None
    return packet


def _option(packet: Packet, name: str):
    for option in packet[DHCP].options:
        if isinstance(option, tuple) and option and option[0] == name:
            return option[1] if len(option) > 1 else None
    return None


def message_type(packet: Packet) -> str | None:
    value = _option(packet, "message-type")
    if isinstance(value, int):
        return MESSAGE_TYPES.get(value)
    if isinstance(value, bytes):
        return value.decode("ascii", "replace")
    return value


def is_reply_for(packet: Packet, xid: int, identity: Identity) -> bool:
    return (
        packet.op == BOOTREPLY
        and packet.xid == xid
        and bytes(packet.chaddr)[:6] == identity.octets
    )


def lease_offer(packet: Packet) -> LeaseOffer:
    server_addr = _option(packet, "server_id") or packet.siaddr
    return LeaseOffer(client_addr=str(packet.yiaddr), server_addr=str(server_addr))


__all__ = [
    "LeaseOffer",
    "decode",
    "encode",
    "is_reply_for",
    "lease_offer",
    "message_type",
    "new_discover",
    "new_release",
    "new_request_from_offer",
    "new_xid",
]
