"""
Pure-Python peer directory used by tests and short-lived deployments.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Iterable

from .base import DatabaseClosedError, PeerDatabase
from .models import Hash, Peer, PeerAddress

__all__ = ["MemoryPeerDB"]


class MemoryPeerDB(PeerDatabase):
    """Mirrors the relational engine's semantics with plain dictionaries."""

    backend_type = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._peers: dict[PeerAddress, Peer] = {}
        # hash -> linked peer addresses (dict keeps insertion order)
        self._links: dict[Hash, dict[PeerAddress, None]] = {}
        self._closed = False

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._peers.clear()
            self._links.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError("Peer database is closed")

    def update_peer(self, peer: Peer, hashes: Iterable[Hash]) -> bool:
        hashes = list(hashes)
        for info_hash in hashes:
            if not isinstance(info_hash, Hash):
                raise TypeError(f"Expected Hash, got {type(info_hash).__name__}")
        with self._lock:
            self._ensure_open()
            existing = self._peers.get(peer.address)
            if existing is None:
                self._peers[peer.address] = peer
            elif peer.last_seen > existing.last_seen:
                self._peers[peer.address] = dataclasses.replace(existing, last_seen=peer.last_seen)
            for info_hash in hashes:
                self._links.setdefault(info_hash, {})[peer.address] = None
            return existing is not None

    def remove_peer(self, address: PeerAddress) -> Peer | None:
        with self._lock:
            self._ensure_open()
            removed = self._peers.pop(address, None)
            if removed is not None:
                self._unlink({address})
            return removed

    def cleanup_peers(self, cutoff: int) -> int:
        with self._lock:
            self._ensure_open()
            stale = {addr for addr, peer in self._peers.items() if peer.last_seen < cutoff}
            for addr in stale:
                del self._peers[addr]
            self._unlink(stale)
            return len(stale)

    def cleanup_hashes(self) -> int:
        with self._lock:
            self._ensure_open()
            orphans = [info_hash for info_hash, linked in self._links.items() if not linked]
            for info_hash in orphans:
                del self._links[info_hash]
            return len(orphans)

    def _unlink(self, addresses: set[PeerAddress]) -> None:
        if not addresses:
            return
        for linked in self._links.values():
            for addr in addresses:
                linked.pop(addr, None)

    def get_peer(self, address: PeerAddress) -> Peer | None:
        with self._lock:
            self._ensure_open()
            return self._peers.get(address)

    def get_peers(self) -> list[Peer]:
        with self._lock:
            self._ensure_open()
            return list(self._peers.values())

    def get_peers_for_hash(self, info_hash: Hash) -> list[Peer]:
        with self._lock:
            self._ensure_open()
            linked = self._links.get(info_hash, {})
            return [self._peers[addr] for addr in linked if addr in self._peers]

    def get_hashes(self) -> list[tuple[Hash, int]]:
        with self._lock:
            self._ensure_open()
            return [(info_hash, len(linked)) for info_hash, linked in self._links.items() if linked]

    def get_peer_count(self) -> int:
        with self._lock:
            self._ensure_open()
            return len(self._peers)

    def get_hash_count(self) -> int:
        with self._lock:
            self._ensure_open()
            return len(self._links)
