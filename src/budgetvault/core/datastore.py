"""Budget datastore adapter: durable flush, snapshot path, wholesale replace."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from budgetvault.core.fileutil import atomic_copy

log = logging.getLogger(__name__)

_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


@runtime_checkable
class Datastore(Protocol):
    """What the backup subsystem needs from the transactional datastore."""

    @property
    def snapshot_path(self) -> Path:
        """On-disk file holding the durable snapshot."""
        ...

    def force_flush(self) -> None:
        """Push pending writes into the snapshot file. Raises on failure."""
        ...

    def replace_from_snapshot(self, path: Path) -> None:
        """Replace the datastore file with the snapshot at path."""
        ...


class BudgetDB:
    """SQLite budget database at <home>/budget.db.

    The schema belongs to the application; this class only manages the
    file as a whole.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def snapshot_path(self) -> Path:
        return self.db_path

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = self._open()
        return self._conn

    def _open(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def force_flush(self) -> None:
        """Checkpoint the WAL into the main database file.

        Raises sqlite3.OperationalError when another connection keeps the
        checkpoint from completing.
        """
        with self._lock:
            row = self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        busy = row[0] if row is not None else 0
        if busy:
            raise sqlite3.OperationalError("WAL checkpoint blocked by another connection")
        log.debug("Flushed %s to durable storage", self.db_path)

    def replace_from_snapshot(self, path: Path) -> None:
        """Swap in a restored snapshot.

        The snapshot is copied next to the database and renamed over it, so
        the database file is never missing or half written. Connections
        held elsewhere in the application are not coordinated.
        """
        with self._lock:
            self.close()
            # Stale sidecars must go first: an old WAL replayed onto the new file corrupts it
            for suffix in _SIDECAR_SUFFIXES:
                sidecar = self.db_path.with_name(self.db_path.name + suffix)
                with contextlib.suppress(FileNotFoundError):
                    sidecar.unlink()
            atomic_copy(path, self.db_path)
        log.info("Datastore replaced from snapshot %s", path)
