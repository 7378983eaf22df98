"""
Periodic TTL sweep over the peer directory.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .metrics import MetricsRecorder
from .peer_db import PeerDatabase, StorageError

__all__ = ["CleanupResult", "CleanupService", "wait_or_stop"]


@dataclass(frozen=True, slots=True)
class CleanupResult:
    cutoff: int
    peers_removed: int
    hashes_removed: int


class CleanupService:
    """Evicts peers older than ``ttl`` and then the hashes they orphaned."""

    def __init__(self, db: PeerDatabase, ttl: int, metrics: MetricsRecorder | None = None):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.db = db
        self.ttl = int(ttl)
        self.metrics = metrics
        self.log = logging.getLogger("zntracker.cleanup")

    def sweep(self, now: float) -> CleanupResult:
        cutoff = int(now) - self.ttl
        # Peers first: their links must be gone before orphans can be counted.
        peers_removed = self.db.cleanup_peers(cutoff)
        hashes_removed = self.db.cleanup_hashes()
        if peers_removed or hashes_removed:
            self.log.info(
                "Cleanup removed %d peers and %d hashes (cutoff=%d)", peers_removed, hashes_removed, cutoff
            )
        else:
            self.log.debug("Cleanup found nothing older than %d", cutoff)
        if self.metrics is not None:
            self.metrics.observe(self.db)
        return CleanupResult(cutoff=cutoff, peers_removed=peers_removed, hashes_removed=hashes_removed)

    async def run(
        self,
        interval: float,
        stop_event: asyncio.Event,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Sweep every ``interval`` seconds until ``stop_event`` is set."""
        while not await wait_or_stop(stop_event, interval):
            try:
                await asyncio.to_thread(self.sweep, clock())
            except StorageError as exc:
                self.log.error("Cleanup sweep failed: %s", exc)


async def wait_or_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except TimeoutError:
        return False
