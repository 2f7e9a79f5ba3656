"""SQLite connection layer for the full-text store and the KV store.

Both stores are separate SQLite files under the data directory. Every
connection opens the FTS5 index as ``main`` and ATTACHes the KV file as
``kv``, so a single transaction spans both.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from cke.errors import IndexCorruptError, StoreReadError, StoreWriteError

INDEX_DIR = "index"
KV_DIR = "kv"
INDEX_FILE = "fts.db"
KV_FILE = "kv.db"

_CORRUPTION_MARKERS = ("malformed", "not a database", "file is encrypted", "corrupt")


class Database:
    """Per-data-directory pair of SQLite files (``index/fts.db``, ``kv/kv.db``)."""

    def __init__(self, data_dir: Path | str) -> None:
        """Store the data directory. Call connect() to open a connection.

        Args:
            data_dir: Root directory holding ``index/`` and ``kv/`` (created if missing).
        """
        self.data_dir = Path(data_dir)
        self.index_path = self.data_dir / INDEX_DIR / INDEX_FILE
        self.kv_path = self.data_dir / KV_DIR / KV_FILE
        self._conn: sqlite3.Connection | None = None

    def connect(self, *, writer: bool = False) -> sqlite3.Connection:
        """Open a connection with the KV store attached.

        Connections run in autocommit mode; callers issue ``BEGIN`` themselves.
        The writer connection uses a zero busy timeout so a second writer on
        the same directory fails immediately instead of waiting.
        """
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        self.kv_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.index_path, isolation_level=None, check_same_thread=not writer)
        except sqlite3.Error as exc:
            raise translate(exc, write=writer) from exc
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("ATTACH DATABASE ? AS kv", (str(self.kv_path),))
            conn.execute(f"PRAGMA busy_timeout = {0 if writer else 5000}")
            conn.execute("PRAGMA main.journal_mode = WAL")
            conn.execute("PRAGMA kv.journal_mode = WAL")
            conn.execute("PRAGMA main.synchronous = NORMAL")
            conn.execute("PRAGMA kv.synchronous = NORMAL")
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise translate(exc, write=writer) from exc
        return conn

    def destroy(self) -> None:
        """Delete both store files and their WAL side files."""
        for path in (self.index_path, self.kv_path):
            for candidate in (path, path.with_name(path.name + "-wal"), path.with_name(path.name + "-shm")):
                candidate.unlink(missing_ok=True)

    def __enter__(self) -> sqlite3.Connection:
        """Open a read connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


# ------------------------------------------------------------------
# sqlite3 → CKEError conversion
# ------------------------------------------------------------------


def is_corruption(exc: sqlite3.DatabaseError) -> bool:
    if isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower():
        return False
    return any(marker in str(exc).lower() for marker in _CORRUPTION_MARKERS)


def translate(exc: sqlite3.Error, *, write: bool) -> Exception:
    """Map a sqlite3 exception onto the engine's error taxonomy."""
    message = str(exc)
    if isinstance(exc, sqlite3.DatabaseError) and is_corruption(exc):
        return IndexCorruptError(f"Index store is corrupt: {message}")
    if "locked" in message.lower() or "busy" in message.lower():
        return StoreWriteError(f"Index is locked by another writer: {message}")
    if write:
        return StoreWriteError(f"Index write failed: {message}")
    return StoreReadError(f"Index read failed: {message}")


@contextmanager
def store_errors(*, write: bool) -> Iterator[None]:
    """Convert sqlite3 exceptions raised inside the block."""
    try:
        yield
    except sqlite3.Error as exc:
        raise translate(exc, write=write) from exc
