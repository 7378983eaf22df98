"""
SQLite-backed peer directory.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from .base import CorruptRecordError, DatabaseClosedError, PeerDatabase, StorageError
from .models import Hash, Peer, PeerAddress

__all__ = ["SQLitePeerDB"]

MEMORY_PATH = ":memory:"


class SQLitePeerDB(PeerDatabase):
    """
    Stores peers, hashes and their links in three SQLite tables.

    A single connection is shared by all callers and guarded by one re-entrant
    lock, so each public method is one critical section. Anything that issues
    more than one statement runs inside ``transaction()`` and is committed or
    rolled back as a unit. Foreign keys are enforced but never cascade: each
    deletion path removes dependent links itself.
    """

    backend_type = "sqlite"

    def __init__(self, db_path: Path | str | None = None):
        self.log = logging.getLogger("zntracker.peer_db")
        if db_path is None or str(db_path) == MEMORY_PATH:
            self.db_path: Path | None = None
            target = MEMORY_PATH
        else:
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(self.db_path)
        self._lock = threading.RLock()
        self._closed = False
        try:
            self._conn = sqlite3.connect(target, timeout=30, isolation_level=None, check_same_thread=False)
            if self.db_path is not None:
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA synchronous=FULL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open peer database {target}: {exc}") from exc
        self._init_schema()
        self.log.debug("Opened peer database at %s", target)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def __del__(self):
        with contextlib.suppress(Exception):
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _init_schema(self) -> None:
        with self._lock:
            try:
                self._conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS peers (
                        pk INTEGER PRIMARY KEY AUTOINCREMENT,
                        address TEXT UNIQUE NOT NULL,
                        date_added INTEGER NOT NULL,
                        last_seen INTEGER NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS peers_last_seen_idx ON peers(last_seen);

                    CREATE TABLE IF NOT EXISTS hashes (
                        pk INTEGER PRIMARY KEY AUTOINCREMENT,
                        hash BLOB UNIQUE NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS peer_hashes (
                        peer_pk INTEGER NOT NULL REFERENCES peers(pk),
                        hash_pk INTEGER NOT NULL REFERENCES hashes(pk),
                        UNIQUE(peer_pk, hash_pk)
                    );
                    CREATE INDEX IF NOT EXISTS peer_hashes_hash_idx ON peer_hashes(hash_pk);
                    """
                )
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to initialise peer schema: {exc}") from exc

    def _ensure_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError("Peer database connection is closed")

    def transaction(self) -> contextlib.AbstractContextManager[sqlite3.Connection]:
        class _WriteContext:
            def __init__(self, outer: SQLitePeerDB):
                self.outer = outer
                self.conn: sqlite3.Connection | None = None

            def __enter__(self) -> sqlite3.Connection:
                self.outer._lock.acquire()
                try:
                    self.outer._ensure_open()
                    self.outer._conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as exc:
                    self.outer._lock.release()
                    raise StorageError(f"Unable to begin transaction: {exc}") from exc
                except BaseException:
                    self.outer._lock.release()
                    raise
                self.conn = self.outer._conn
                return self.conn

            def __exit__(self, exc_type, exc, tb) -> bool:
                conn = self.conn
                self.conn = None
                try:
                    if conn is None:
                        return False
                    if exc_type:
                        with contextlib.suppress(sqlite3.Error):
                            conn.execute("ROLLBACK")
                        if isinstance(exc, sqlite3.Error):
                            raise StorageError(f"Peer database write failed: {exc}") from exc
                        return False
                    try:
                        conn.execute("COMMIT")
                    except sqlite3.Error as commit_exc:
                        with contextlib.suppress(sqlite3.Error):
                            conn.execute("ROLLBACK")
                        raise StorageError(f"Peer database commit failed: {commit_exc}") from commit_exc
                finally:
                    self.outer._lock.release()
                return False

        return _WriteContext(self)

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            self._ensure_open()
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Peer database query failed: {exc}") from exc

    def _count(self, table: str) -> int:
        rows = self._query(f"SELECT COUNT(pk) AS cnt FROM {table}")
        return int(rows[0]["cnt"]) if rows else 0

    # Row decoding ---------------------------------------------------------------

    def _row_to_peer(self, row: sqlite3.Row) -> Peer:
        raw_address = row["address"]
        date_added = row["date_added"]
        last_seen = row["last_seen"]
        if not isinstance(raw_address, str):
            raise CorruptRecordError(f"Peer address column holds {type(raw_address).__name__}")
        try:
            address = PeerAddress.parse(raw_address)
        except ValueError as exc:
            raise CorruptRecordError(f"Stored peer address {raw_address!r} is invalid") from exc
        if not isinstance(date_added, int) or not isinstance(last_seen, int):
            raise CorruptRecordError(f"Stored timestamps for {raw_address} are not integers")
        try:
            return Peer(address=address, date_added=date_added, last_seen=last_seen)
        except ValueError as exc:
            raise CorruptRecordError(str(exc)) from exc

    def _row_to_hash(self, value: Any) -> Hash:
        if not isinstance(value, bytes):
            raise CorruptRecordError(f"Stored hash holds {type(value).__name__}, expected blob")
        return Hash(value)

    # Mutations ------------------------------------------------------------------

    def update_peer(self, peer: Peer, hashes: Iterable[Hash]) -> bool:
        digests = [_digest(info_hash) for info_hash in hashes]
        address = str(peer.address)
        with self.transaction() as conn:
            row = conn.execute("SELECT pk FROM peers WHERE address=?", (address,)).fetchone()
            was_known = row is not None
            if was_known:
                peer_pk = row["pk"]
                conn.execute(
                    "UPDATE peers SET last_seen=MAX(last_seen, ?) WHERE pk=?",
                    (peer.last_seen, peer_pk),
                )
            else:
                cur = conn.execute(
                    "INSERT INTO peers(address, date_added, last_seen) VALUES (?, ?, ?)",
                    (address, peer.date_added, peer.last_seen),
                )
                peer_pk = cur.lastrowid
            for digest in digests:
                conn.execute(
                    "INSERT INTO hashes(hash) VALUES (?) ON CONFLICT(hash) DO NOTHING",
                    (digest,),
                )
                conn.execute(
                    """
                    INSERT INTO peer_hashes(peer_pk, hash_pk)
                    SELECT ?, pk FROM hashes WHERE hash=?
                    ON CONFLICT(peer_pk, hash_pk) DO NOTHING
                    """,
                    (peer_pk, digest),
                )
        return was_known

    def remove_peer(self, address: PeerAddress) -> Peer | None:
        """Delete the peer and its links; returns the removed record.

        The row is deleted before it is decoded, so a corrupt row is still
        evicted and then reported as ``CorruptRecordError``.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT pk, address, date_added, last_seen FROM peers WHERE address=?",
                (str(address),),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM peer_hashes WHERE peer_pk=?", (row["pk"],))
            conn.execute("DELETE FROM peers WHERE pk=?", (row["pk"],))
        return self._row_to_peer(row)

    def cleanup_peers(self, cutoff: int) -> int:
        with self.transaction() as conn:
            links = conn.execute(
                "DELETE FROM peer_hashes WHERE peer_pk IN (SELECT pk FROM peers WHERE last_seen < ?)",
                (cutoff,),
            )
            peers = conn.execute("DELETE FROM peers WHERE last_seen < ?", (cutoff,))
            removed = peers.rowcount
        self.log.debug("Removed %d stale peers (%d links) older than %s", removed, links.rowcount, cutoff)
        return removed

    def cleanup_hashes(self) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                DELETE FROM hashes
                WHERE NOT EXISTS (
                    SELECT 1 FROM peer_hashes ph WHERE ph.hash_pk = hashes.pk
                )
                """
            )
            removed = cur.rowcount
        self.log.debug("Removed %d orphaned hashes", removed)
        return removed

    # Queries --------------------------------------------------------------------

    def get_peer(self, address: PeerAddress) -> Peer | None:
        rows = self._query(
            "SELECT address, date_added, last_seen FROM peers WHERE address=?",
            (str(address),),
        )
        if not rows:
            return None
        return self._row_to_peer(rows[0])

    def get_peers(self) -> list[Peer]:
        rows = self._query("SELECT address, date_added, last_seen FROM peers")
        return [self._row_to_peer(row) for row in rows]

    def get_peers_for_hash(self, info_hash: Hash) -> list[Peer]:
        rows = self._query(
            """
            SELECT p.address, p.date_added, p.last_seen
            FROM hashes h
                INNER JOIN peer_hashes ph ON (h.pk = ph.hash_pk)
                LEFT JOIN peers p ON (p.pk = ph.peer_pk)
            WHERE h.hash = ?
            """,
            (_digest(info_hash),),
        )
        return [self._row_to_peer(row) for row in rows if row["address"] is not None]

    def get_hashes(self) -> list[tuple[Hash, int]]:
        rows = self._query(
            """
            SELECT h.hash, COUNT(ph.peer_pk) AS peer_count
            FROM hashes h
                INNER JOIN peer_hashes ph ON (h.pk = ph.hash_pk)
            GROUP BY h.pk
            """
        )
        return [(self._row_to_hash(row["hash"]), int(row["peer_count"])) for row in rows]

    def get_peer_count(self) -> int:
        return self._count("peers")

    def get_hash_count(self) -> int:
        return self._count("hashes")

    # Maintenance ----------------------------------------------------------------

    def run_startup_checks(self) -> None:
        with self._lock:
            self._ensure_open()
            try:
                result = self._conn.execute("PRAGMA quick_check").fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"quick_check could not run: {exc}") from exc
            if not result or result[0] != "ok":
                raise StorageError(f"quick_check failed: {result[0] if result else 'unknown'}")


def _digest(info_hash: Hash) -> bytes:
    if not isinstance(info_hash, Hash):
        raise TypeError(f"Expected Hash, got {type(info_hash).__name__}")
    return info_hash.digest
