import asyncio
import unittest

from zntracker.cleanup import CleanupService
from zntracker.metrics import MetricsRecorder
from zntracker.peer_db import Hash, MemoryPeerDB, Peer, PeerAddress, SQLitePeerDB, StorageError


def announce(db, address: str, ts: int, *hashes: Hash) -> None:
    db.update_peer(Peer(address=PeerAddress.parse(address), date_added=ts, last_seen=ts), hashes)


class FailingDB(MemoryPeerDB):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def cleanup_peers(self, cutoff: int) -> int:
        self.calls += 1
        raise StorageError("disk on fire")


class CleanupServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = SQLitePeerDB()
        self.metrics = MetricsRecorder()
        self.service = CleanupService(self.db, ttl=60, metrics=self.metrics)

    def tearDown(self) -> None:
        self.db.close()

    def test_sweep_uses_ttl_cutoff_and_orders_passes(self) -> None:
        announce(self.db, "10.0.0.1:6881", 1000, Hash(b"a"), Hash(b"b"))
        announce(self.db, "10.0.0.2:6881", 1050, Hash(b"b"))
        result = self.service.sweep(now=1100)
        self.assertEqual(result.cutoff, 1040)
        self.assertEqual(result.peers_removed, 1)
        self.assertEqual(result.hashes_removed, 1)
        self.assertEqual(self.db.get_hashes(), [(Hash(b"b"), 1)])

    def test_sweep_refreshes_gauges(self) -> None:
        announce(self.db, "10.0.0.1:6881", 1000, Hash(b"a"))
        announce(self.db, "10.0.0.2:6881", 1000, Hash(b"a"), Hash(b"c"))
        self.service.sweep(now=1010)
        snapshot = self.metrics.snapshot()
        self.assertEqual(snapshot[MetricsRecorder.PEERS], 2)
        self.assertEqual(snapshot[MetricsRecorder.HASHES], 2)

    def test_peer_exactly_at_cutoff_survives(self) -> None:
        announce(self.db, "10.0.0.1:6881", 1040, Hash(b"a"))
        result = self.service.sweep(now=1100)
        self.assertEqual(result.peers_removed, 0)
        self.assertEqual(self.db.get_peer_count(), 1)

    def test_rejects_non_positive_ttl(self) -> None:
        with self.assertRaises(ValueError):
            CleanupService(self.db, ttl=0)

    def test_run_loop_sweeps_until_stopped(self) -> None:
        announce(self.db, "10.0.0.1:6881", 1000, Hash(b"a"))

        async def scenario() -> None:
            stop = asyncio.Event()
            task = asyncio.create_task(self.service.run(0.01, stop, clock=lambda: 5000))
            for _ in range(200):
                if self.db.get_peer_count() == 0:
                    break
                await asyncio.sleep(0.01)
            stop.set()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(scenario())
        self.assertEqual(self.db.get_peer_count(), 0)
        self.assertEqual(self.db.get_hash_count(), 0)

    def test_run_loop_survives_storage_errors(self) -> None:
        failing = FailingDB()
        service = CleanupService(failing, ttl=60)

        async def scenario() -> None:
            stop = asyncio.Event()
            task = asyncio.create_task(service.run(0.01, stop, clock=lambda: 5000))
            for _ in range(200):
                if failing.calls >= 2:
                    break
                await asyncio.sleep(0.01)
            stop.set()
            await asyncio.wait_for(task, timeout=1)

        with self.assertLogs("zntracker.cleanup", level="ERROR"):
            asyncio.run(scenario())
        self.assertGreaterEqual(failing.calls, 2)


if __name__ == "__main__":
    unittest.main()
