import asyncio
import tempfile
import unittest
from pathlib import Path

from zntracker.config import TrackerConfig
from zntracker.metrics import MetricsRecorder
from zntracker.peer_db import Hash, MemoryPeerDB, PeerAddress, SQLitePeerDB
from zntracker.tracker import Tracker

SITE_A = Hash(b"\xaa" * 20)
SITE_B = Hash(b"\xbb" * 20)


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TrackerAnnounceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config = TrackerConfig()
        self.config.data_dir = Path(self.tmpdir.name)
        self.clock = FakeClock(1000)
        self.tracker = Tracker(self.config, db=MemoryPeerDB(), clock=self.clock)

    def tearDown(self) -> None:
        self.tracker.close()
        self.tmpdir.cleanup()

    def test_announce_returns_swarm_without_self(self) -> None:
        first = self.tracker.announce("10.0.0.1:6881", [SITE_A])
        self.assertFalse(first.was_known)
        self.assertEqual(first.peers, {SITE_A: []})

        second = self.tracker.announce("10.0.0.2:6881", [SITE_A, SITE_B])
        self.assertEqual([str(p.address) for p in second.peers[SITE_A]], ["10.0.0.1:6881"])
        self.assertEqual(second.peers[SITE_B], [])

    def test_reannounce_is_known_and_refreshes_last_seen(self) -> None:
        self.tracker.announce("10.0.0.1:6881", [SITE_A])
        self.clock.now = 1500
        result = self.tracker.announce(PeerAddress.parse("10.0.0.1:6881"), [SITE_A])
        self.assertTrue(result.was_known)
        peer = self.tracker.db.get_peer(PeerAddress.parse("10.0.0.1:6881"))
        self.assertEqual((peer.date_added, peer.last_seen), (1000, 1500))

    def test_requests_and_connections_are_counted(self) -> None:
        self.tracker.connection_opened()
        self.tracker.announce("10.0.0.1:6881", [SITE_A])
        self.tracker.announce("10.0.0.1:6881", [SITE_A], now=1001)
        self.tracker.connection_closed()
        snapshot = self.tracker.metrics.snapshot()
        self.assertEqual(snapshot[MetricsRecorder.REQUESTS], 2)
        self.assertEqual(snapshot[MetricsRecorder.OPENED], 1)
        self.assertEqual(snapshot[MetricsRecorder.CLOSED], 1)

    def test_build_info_reflects_backend(self) -> None:
        self.assertEqual(self.tracker.metrics.build_info.peer_db_type, "memory")


class TrackerServiceTests(unittest.TestCase):
    def test_background_cleanup_evicts_stale_peers(self) -> None:
        config = TrackerConfig()
        config.cleanup.interval = 0.01
        config.cleanup.peer_ttl = 60
        config.metrics.refresh_interval = 0.01
        clock = FakeClock(1000)
        db = SQLitePeerDB()

        async def scenario() -> Tracker:
            tracker = Tracker(config, db=db, clock=clock)
            tracker.announce("10.0.0.1:6881", [SITE_A])
            tracker.announce("10.0.0.2:6881", [SITE_A], now=1100)
            clock.now = 1130
            await tracker.start()
            for _ in range(200):
                if db.get_peer_count() == 1:
                    break
                await asyncio.sleep(0.01)
            await tracker.stop()
            return tracker

        tracker = asyncio.run(scenario())
        try:
            self.assertEqual([str(p.address) for p in db.get_peers()], ["10.0.0.2:6881"])
            self.assertEqual(db.get_hashes(), [(SITE_A, 1)])
            self.assertEqual(tracker.metrics.snapshot()[MetricsRecorder.PEERS], 1)
        finally:
            tracker.close()
        self.assertTrue(db.closed)

    def test_run_returns_after_shutdown_request(self) -> None:
        config = TrackerConfig()
        config.metrics.enabled = True
        config.metrics.port = 0

        async def scenario() -> None:
            tracker = Tracker(config, db=MemoryPeerDB())
            runner = asyncio.create_task(tracker.run())
            await asyncio.sleep(0.05)
            self.assertIsNotNone(tracker.metrics_server)
            tracker.request_shutdown()
            await asyncio.wait_for(runner, timeout=2)
            self.assertIsNone(tracker.metrics_server)

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
