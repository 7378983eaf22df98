"""
Tracker orchestration: peer directory, cleanup scheduling and metrics.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .cleanup import CleanupService, wait_or_stop
from .config import TrackerConfig
from .metrics import MetricsRecorder, MetricsServer
from .peer_db import Hash, Peer, PeerAddress, PeerDatabase, StorageError, open_peer_db
from .version import BUILD_INFO


@dataclass(slots=True)
class AnnounceResult:
    was_known: bool
    peers: dict[Hash, list[Peer]] = field(default_factory=dict)


class Tracker:
    """Coordinates the peer directory with its periodic services."""

    def __init__(
        self,
        config: TrackerConfig,
        db: PeerDatabase | None = None,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.log = logging.getLogger("zntracker.tracker")
        self.clock = clock
        self.db = db if db is not None else open_peer_db(config)
        self.metrics = metrics or MetricsRecorder(BUILD_INFO.with_backend(self.db.backend_type))
        self.cleanup = CleanupService(self.db, config.cleanup.peer_ttl, self.metrics)
        self.metrics_server: MetricsServer | None = None
        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_event = asyncio.Event()
        self._started = False

    def announce(
        self,
        address: PeerAddress | str,
        hashes: Iterable[Hash],
        *,
        now: float | None = None,
    ) -> AnnounceResult:
        """Record an announce and return the swarm for each announced hash.

        The announcing peer is left out of its own swarm listing.
        """
        self.metrics.inc_requests()
        if isinstance(address, str):
            address = PeerAddress.parse(address)
        timestamp = int(self.clock() if now is None else now)
        hashes = list(hashes)
        peer = Peer(address=address, date_added=timestamp, last_seen=timestamp)
        was_known = self.db.update_peer(peer, hashes)
        if not was_known:
            self.log.debug("New peer %s announcing %d hashes", address, len(hashes))
        swarms = {
            info_hash: [p for p in self.db.get_peers_for_hash(info_hash) if p.address != address]
            for info_hash in hashes
        }
        return AnnounceResult(was_known=was_known, peers=swarms)

    def connection_opened(self) -> None:
        self.metrics.inc_opened_connections()

    def connection_closed(self) -> None:
        self.metrics.inc_closed_connections()

    async def start(self) -> None:
        if self._started:
            return
        self.log.info(
            "Starting tracker; backend=%s ttl=%ss interval=%ss",
            self.db.backend_type,
            self.config.cleanup.peer_ttl,
            self.config.cleanup.interval,
        )
        self._stop_event.clear()
        if self.config.metrics.enabled:
            self.metrics_server = MetricsServer(self.config.metrics.host, self.config.metrics.port, self.metrics)
            await self.metrics_server.start()
        self._tasks["cleanup"] = asyncio.create_task(
            self.cleanup.run(self.config.cleanup.interval, self._stop_event, self.clock), name="cleanup"
        )
        self._tasks["metrics-refresh"] = asyncio.create_task(self._metrics_task(), name="metrics-refresh")
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        self.log.info("Stopping tracker...")
        self._stop_event.set()
        for name, task in list(self._tasks.items()):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self.log.debug("Service %s stopped", name)
        self._tasks.clear()
        if self.metrics_server:
            await self.metrics_server.stop()
            self.metrics_server = None
        self._started = False

    async def run(self) -> None:
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self.log.warning("Shutdown requested")
        self._stop_event.set()

    def close(self) -> None:
        """Release the peer directory."""
        try:
            self.db.close()
        except StorageError:
            self.log.exception("Failed to close peer database cleanly")

    async def _metrics_task(self) -> None:
        while not await wait_or_stop(self._stop_event, self.config.metrics.refresh_interval):
            try:
                await asyncio.to_thread(self.metrics.observe, self.db)
            except StorageError as exc:
                self.log.error("Metrics refresh failed: %s", exc)
