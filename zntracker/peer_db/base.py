"""
Backend-independent peer directory interface and error types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from .models import Hash, Peer, PeerAddress

__all__ = [
    "CorruptRecordError",
    "DatabaseClosedError",
    "PeerDatabase",
    "StorageError",
]


class StorageError(Exception):
    """Raised when the peer directory cannot service a request."""


class CorruptRecordError(StorageError):
    """Raised when a stored row cannot be decoded back into a value type."""


class DatabaseClosedError(StorageError):
    """Raised when an operation is attempted on a closed directory."""


class PeerDatabase(ABC):
    """
    Operation set every peer directory backend exposes.

    The announce path calls ``update_peer``; discovery uses the ``get_*``
    queries; the cleanup scheduler calls ``cleanup_peers`` followed by
    ``cleanup_hashes``. Hashes orphaned by a peer pass are only visible to a
    hash pass that runs afterwards, so the two are never fused.
    """

    backend_type: str = "unknown"

    @abstractmethod
    def update_peer(self, peer: Peer, hashes: Iterable[Hash]) -> bool:
        """Upsert ``peer`` and link it to ``hashes``.

        Returns True when the address was already present before the call.
        """

    @abstractmethod
    def remove_peer(self, address: PeerAddress) -> Peer | None:
        """Delete the peer and its links; returns the removed record."""

    @abstractmethod
    def get_peer(self, address: PeerAddress) -> Peer | None:
        ...

    @abstractmethod
    def get_peers(self) -> list[Peer]:
        ...

    @abstractmethod
    def get_peers_for_hash(self, info_hash: Hash) -> list[Peer]:
        ...

    @abstractmethod
    def get_hashes(self) -> list[tuple[Hash, int]]:
        """Every linked hash with its current peer count."""

    @abstractmethod
    def get_peer_count(self) -> int:
        ...

    @abstractmethod
    def get_hash_count(self) -> int:
        ...

    @abstractmethod
    def cleanup_peers(self, cutoff: int) -> int:
        """Remove peers with ``last_seen < cutoff``; returns how many."""

    @abstractmethod
    def cleanup_hashes(self) -> int:
        """Remove hashes no peer links to; returns how many."""

    @abstractmethod
    def close(self) -> None:
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    def __enter__(self) -> PeerDatabase:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False
