from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable

IDENTITY_LENGTH = 6
LOCAL_BIT = 0x02
MULTICAST_BIT = 0x01


class RandomSourceError(Exception):
    """Raised when the entropy source cannot produce a hardware address."""


@dataclass(frozen=True)
class Identity:
    """Synthetic client hardware address used for exactly one transaction."""

    octets: bytes

    def __post_init__(self) -> None:
        if len(self.octets) != IDENTITY_LENGTH:
            raise ValueError(
                f"hardware address must be {IDENTITY_LENGTH} bytes, got {len(self.octets)}"
            )

    @classmethod
    def parse(cls, text: str) -> Identity:
        parts = text.split(":")
        if len(parts) != IDENTITY_LENGTH:
            raise ValueError(f"invalid hardware address {text!r}")
        try:
            return cls(bytes(int(part, 16) for part in parts))
        except ValueError as exc:
            raise ValueError(f"invalid hardware address {text!r}") from exc

    @property
    def is_local_unicast(self) -> bool:
        return bool(self.octets[0] & LOCAL_BIT) and not self.octets[0] & MULTICAST_BIT

    def __str__(self) -> str:
        return ":".join(f"{octet:02x}" for octet in self.octets)


def generate_identity(
    random_bytes: Callable[[int], bytes] = secrets.token_bytes,
) -> Identity:
    try:
        raw = bytearray(random_bytes(IDENTITY_LENGTH))
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError("entropy source unavailable") from exc

    if len(raw) != IDENTITY_LENGTH:
        raise RandomSourceError(
            f"entropy source returned {len(raw)} bytes, expected {IDENTITY_LENGTH}"
        )

    raw[0] = (raw[0] | LOCAL_BIT) & ~MULTICAST_BIT & 0xFF
    return Identity(bytes(raw))


__all__ = [
    "Identity",
    "RandomSourceError",
    "generate_identity",
]
