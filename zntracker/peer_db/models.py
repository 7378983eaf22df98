"""
Value types stored in the peer directory.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass

__all__ = ["Hash", "InvalidAddressError", "Peer", "PeerAddress"]

_HOSTNAME_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9\-.]*[A-Za-z0-9])?")


class InvalidAddressError(ValueError):
    """Raised when a peer address string cannot be parsed."""


@dataclass(frozen=True, slots=True)
class PeerAddress:
    """Network endpoint a peer announces from, rendered as ``host:port``."""

    host: str
    port: int

    @classmethod
    def parse(cls, value: str) -> PeerAddress:
        if not isinstance(value, str) or not value:
            raise InvalidAddressError(f"Invalid peer address {value!r}")
        if value.startswith("["):
            host, sep, port_text = value[1:].partition("]:")
            if not sep:
                raise InvalidAddressError(f"Invalid IPv6 peer address {value!r}")
            try:
                ipaddress.IPv6Address(host)
            except ValueError as exc:
                raise InvalidAddressError(f"Invalid IPv6 host in {value!r}") from exc
        else:
            host, sep, port_text = value.rpartition(":")
            if not sep or not host:
                raise InvalidAddressError(f"Peer address {value!r} is missing a port")
            if ":" in host:
                raise InvalidAddressError(f"IPv6 peer address {value!r} must be bracketed")
            if not _HOSTNAME_RE.fullmatch(host):
                raise InvalidAddressError(f"Invalid host in peer address {value!r}")
        if not (port_text.isascii() and port_text.isdigit()):
            raise InvalidAddressError(f"Invalid port in peer address {value!r}")
        port = int(port_text)
        if not (1 <= port <= 65535):
            raise InvalidAddressError(f"Port {port} out of range in {value!r}")
        return cls(host=host, port=port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class Hash:
    """Opaque swarm identifier. Any length; equality is byte-exact."""

    digest: bytes

    def __post_init__(self) -> None:
        if isinstance(self.digest, bytearray):
            object.__setattr__(self, "digest", bytes(self.digest))
        elif not isinstance(self.digest, bytes):
            raise TypeError("Hash digest must be bytes")

    def hex(self) -> str:
        return self.digest.hex()

    def __str__(self) -> str:
        return self.digest.hex()


@dataclass(frozen=True, slots=True)
class Peer:
    address: PeerAddress
    date_added: int
    last_seen: int

    def __post_init__(self) -> None:
        if self.last_seen < self.date_added:
            raise ValueError(
                f"Peer {self.address} last_seen {self.last_seen} precedes date_added {self.date_added}"
            )
