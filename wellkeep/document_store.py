"""
Document store using SQLite.

Raw key → bytes persistence. The store never interprets the values it holds:
each collection of domain documents lives under one key as an opaque blob,
and so does the schema version marker.

Guarantees:
- A ``put`` is committed (and fsynced, ``synchronous=FULL``) before it returns.
- Every row carries a SHA-256 checksum. A value that no longer matches its
  checksum raises ``CorruptionError`` for that key only.
- One ``put`` commits one key. The only multi-key operation is ``promote``,
  which renames already-written staged keys onto live keys in a single
  transaction; the restore path uses it to swap collections atomically.
"""

import hashlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from .errors import CorruptionError, IOFailure
from .types import utc_now

logger = logging.getLogger(__name__)

# Suffix for rows moved aside after a checksum or decode failure
CORRUPT_SUFFIX = ".corrupt"


def _checksum(value: bytes) -> str:
    return hashlib.sha256(value).hexdigest()


class DocumentStore:
    """
    SQLite-backed key/value store for serialized collections.

    Thread-safe: all access to the connection is serialized by a lock, so a
    call from a timer thread interleaves with host calls per operation,
    never within one.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control:
        # single statements autocommit, promote() uses BEGIN IMMEDIATE
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")
        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                checksum TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

    def _connection(self, key: Optional[str] = None) -> sqlite3.Connection:
        if self._conn is None:
            raise IOFailure("Document store is closed", key=key)
        return self._conn

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[bytes]:
        """
        Get the raw value stored under a key.

        Args:
            key: Store key (e.g. a collection name)

        Returns:
            The stored bytes, or None if the key is absent

        Raises:
            CorruptionError: If the stored value fails its checksum
            IOFailure: If the database cannot be read
        """
        with self._lock:
            try:
                row = self._connection(key).execute(
                    "SELECT value, checksum FROM entries WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.DatabaseError as e:
                raise IOFailure(f"Failed to read {key!r}: {e}", key=key, cause=e) from e

        if row is None:
            return None

        value = row["value"]
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not isinstance(value, bytes):
            raise CorruptionError(key, f"unexpected stored type {type(value).__name__}")
        if _checksum(value) != row["checksum"]:
            raise CorruptionError(key, "checksum mismatch")
        return value

    def exists(self, key: str) -> bool:
        """Check if a key is present (without verifying its value)."""
        with self._lock:
            try:
                cursor = self._connection(key).execute(
                    "SELECT 1 FROM entries WHERE key = ?", (key,)
                )
                return cursor.fetchone() is not None
            except sqlite3.DatabaseError as e:
                raise IOFailure(f"Failed to read {key!r}: {e}", key=key, cause=e) from e

    def keys(self, prefix: str = "") -> list[str]:
        """
        List stored keys.

        Args:
            prefix: Only keys starting with this prefix

        Returns:
            Sorted list of keys
        """
        with self._lock:
            try:
                cursor = self._connection().execute(
                    "SELECT key FROM entries WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                )
                return [row["key"] for row in cursor]
            except sqlite3.DatabaseError as e:
                raise IOFailure(f"Failed to list keys: {e}", cause=e) from e

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def put(self, key: str, value: Union[bytes, str]) -> None:
        """
        Store a value under a key, replacing any previous value.

        The write is committed before this returns.

        Args:
            key: Store key
            value: Raw bytes (str is encoded as UTF-8)

        Raises:
            IOFailure: If the write could not be committed
        """
        if isinstance(value, str):
            value = value.encode("utf-8")
        with self._lock:
            try:
                self._connection(key).execute("""
                    INSERT OR REPLACE INTO entries (key, value, checksum, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (key, value, _checksum(value), utc_now()))
            except sqlite3.DatabaseError as e:
                raise IOFailure(f"Failed to write {key!r}: {e}", key=key, cause=e) from e

    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if the key existed and was deleted

        Raises:
            IOFailure: If the delete could not be committed
        """
        with self._lock:
            try:
                cursor = self._connection(key).execute(
                    "DELETE FROM entries WHERE key = ?", (key,)
                )
            except sqlite3.DatabaseError as e:
                raise IOFailure(f"Failed to delete {key!r}: {e}", key=key, cause=e) from e
        return cursor.rowcount > 0

    def quarantine(self, key: str) -> Optional[str]:
        """
        Move an unreadable value aside so the key can start fresh.

        The original bytes are preserved under ``<key>.corrupt`` (replacing
        any earlier quarantined copy) rather than discarded.

        Returns:
            The quarantine key, or None if ``key`` was absent
        """
        target = key + CORRUPT_SUFFIX
        with self._lock:
            conn = self._connection(key)
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT value, checksum, updated_at FROM entries WHERE key = ?", (key,)
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    return None
                conn.execute("""
                    INSERT OR REPLACE INTO entries (key, value, checksum, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (target, row["value"], row["checksum"], row["updated_at"]))
                conn.execute("DELETE FROM entries WHERE key = ?", (key,))
                conn.execute("COMMIT")
            except sqlite3.DatabaseError as e:
                self._rollback_quietly(conn)
                raise IOFailure(f"Failed to quarantine {key!r}: {e}", key=key, cause=e) from e
        logger.warning("Quarantined corrupted value %s -> %s", key, target)
        return target

    def promote(self, mapping: dict[str, str]) -> None:
        """
        Atomically rename staged keys onto live keys.

        Every staged key must already exist. Either all live keys are
        replaced and all staged keys removed, or nothing changes.

        Args:
            mapping: staged key → live key

        Raises:
            IOFailure: If a staged key is missing or the transaction fails
        """
        if not mapping:
            return
        now = utc_now()
        with self._lock:
            conn = self._connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                for staged, live in mapping.items():
                    row = conn.execute(
                        "SELECT value, checksum FROM entries WHERE key = ?", (staged,)
                    ).fetchone()
                    if row is None:
                        raise IOFailure(f"Staged key {staged!r} is missing", key=staged)
                    conn.execute("""
                        INSERT OR REPLACE INTO entries (key, value, checksum, updated_at)
                        VALUES (?, ?, ?, ?)
                    """, (live, row["value"], row["checksum"], now))
                    conn.execute("DELETE FROM entries WHERE key = ?", (staged,))
                conn.execute("COMMIT")
            except IOFailure:
                self._rollback_quietly(conn)
                raise
            except sqlite3.DatabaseError as e:
                self._rollback_quietly(conn)
                raise IOFailure(f"Failed to promote staged keys: {e}", cause=e) from e

    @staticmethod
    def _rollback_quietly(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.DatabaseError as e:
                logger.warning("Rollback failed: %s", e)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
