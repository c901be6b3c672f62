"""
SQLite persistence backend.

This module stores every namespace in a single SQLite file. It is the
durable backend used outside of tests.

Invariants:
    - One SQLite file per server data directory
    - Every write is a single autocommitted statement
    - seq preserves first-insertion order; upserts keep the original seq

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION when changing the table layout
    - Test with large datasets before production

Table schema:
    records:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT (insertion order)
        - namespace TEXT
        - record_key TEXT
        - body_json TEXT
        - updated_at INTEGER (Unix ms)
        - UNIQUE (namespace, record_key)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .base import StorageConnectionError, StorageError

logger = logging.getLogger(__name__)


class SqliteBackend:
    """Single-file SQLite implementation of PersistenceBackend.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> backend = SqliteBackend("/var/lib/docbase")
        >>> await backend.connect()
        >>> await backend.put("collection:posts", "p1", {"id": "p1"})
    """

    SCHEMA_VERSION = 2

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "docbase.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the backend.

        Args:
            data_dir: Directory for the SQLite database file
            db_filename: Database file name inside data_dir
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Raises:
            StorageConnectionError: If connect() has not been called
        """
        if not self._connected:
            raise StorageConnectionError("Not connected")

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema, migrating version 1 tables in place."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );
        """)

        columns = {row["name"] for row in conn.execute("PRAGMA table_info(records)")}
        if columns and "seq" not in columns:
            self._migrate_v1(conn)

        conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                record_key TEXT NOT NULL,
                body_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (namespace, record_key)
            );

            CREATE INDEX IF NOT EXISTS idx_records_namespace ON records(namespace, seq);
        """)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, int(time.time() * 1000)),
        )

    def _migrate_v1(self, conn: sqlite3.Connection) -> None:
        """Copy a version 1 table (ordered by implicit rowid) into the seq layout."""
        logger.info("Migrating records table to schema version 2", extra={"db_path": str(self.db_path)})
        conn.executescript("""
            BEGIN;
            ALTER TABLE records RENAME TO records_v1;
            DROP INDEX IF EXISTS idx_records_namespace;
            CREATE TABLE records (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                record_key TEXT NOT NULL,
                body_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (namespace, record_key)
            );
            INSERT INTO records (namespace, record_key, body_json, updated_at)
                SELECT namespace, record_key, body_json, updated_at FROM records_v1 ORDER BY rowid;
            DROP TABLE records_v1;
            COMMIT;
        """)

    async def connect(self) -> None:
        """Create the data directory and schema if needed."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageConnectionError(f"Cannot create data directory {self.data_dir}: {e}")

        self._connected = True
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info("SQLite backend ready", extra={"db_path": str(self.db_path)})

    async def close(self) -> None:
        self._connected = False

    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT body_json FROM records WHERE namespace = ? AND record_key = ?",
                (namespace, key),
            )
            row = cursor.fetchone()
            return json.loads(row["body_json"]) if row else None

    async def put(self, namespace: str, key: str, record: dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO records (namespace, record_key, body_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (namespace, record_key)
                DO UPDATE SET body_json = excluded.body_json, updated_at = excluded.updated_at
                """,
                (namespace, key, json.dumps(record), int(time.time() * 1000)),
            )

    async def delete(self, namespace: str, key: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE namespace = ? AND record_key = ?",
                (namespace, key),
            )
            return cursor.rowcount > 0

    async def scan(self, namespace: str) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT body_json FROM records WHERE namespace = ? ORDER BY seq",
                (namespace,),
            )
            return [json.loads(row["body_json"]) for row in cursor.fetchall()]

    async def drop(self, namespace: str) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM records WHERE namespace = ?", (namespace,))
            return cursor.rowcount

    async def get_stats(self) -> dict[str, int]:
        """Get record counts per namespace."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT namespace, COUNT(*) AS n FROM records GROUP BY namespace"
            )
            return {row["namespace"]: row["n"] for row in cursor.fetchall()}
