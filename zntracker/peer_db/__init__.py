"""
Peer directory exports.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from .base import CorruptRecordError, DatabaseClosedError, PeerDatabase, StorageError
from .memory import MemoryPeerDB
from .models import Hash, InvalidAddressError, Peer, PeerAddress
from .sqlite import SQLitePeerDB

if TYPE_CHECKING:
    from ..config import TrackerConfig

__all__ = [
    "CorruptRecordError",
    "DatabaseClosedError",
    "Hash",
    "InvalidAddressError",
    "MemoryPeerDB",
    "Peer",
    "PeerAddress",
    "PeerDatabase",
    "SQLitePeerDB",
    "StorageError",
    "open_peer_db",
]


def open_peer_db(config: TrackerConfig) -> PeerDatabase:
    """Build the backend selected by ``config.storage``.

    Relative storage paths are resolved against ``config.data_dir``.
    """
    storage = config.storage
    if storage.backend == "memory":
        return MemoryPeerDB()
    if not storage.persistent:
        return SQLitePeerDB()
    db_path = Path(storage.path).expanduser()
    if not db_path.is_absolute():
        db_path = config.data_dir / db_path
    db = SQLitePeerDB(db_path)
    db.run_startup_checks()
    return db
