"""
Unit tests for persistence backends.

Tests cover:
- In-memory and SQLite backends through the same protocol
- Insertion-ordered scans and namespace isolation
- Connection checks and injected failures
- Backend factory
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from dbaas.docbase_server.config import StorageBackend, StorageConfig
from dbaas.docbase_server.storage import (
    InMemoryBackend,
    SqliteBackend,
    StorageConnectionError,
    StorageError,
    create_backend,
    documents_namespace,
)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["memory", "sqlite"])
async def backend(request, data_dir):
    """A connected backend of each kind."""
    if request.param == "memory":
        instance = InMemoryBackend()
    else:
        instance = SqliteBackend(data_dir, wal_mode=False)
    await instance.connect()
    yield instance
    await instance.close()


class TestBackendProtocol:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_put_get(self, backend):
        await backend.put("ns", "k1", {"id": "k1", "n": 1})
        assert await backend.get("ns", "k1") == {"id": "k1", "n": 1}
        assert await backend.get("ns", "missing") is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self, backend):
        await backend.put("ns", "k1", {"v": 1})
        await backend.put("ns", "k1", {"v": 2})
        assert await backend.get("ns", "k1") == {"v": 2}
        assert len(await backend.scan("ns")) == 1

    @pytest.mark.asyncio
    async def test_delete(self, backend):
        await backend.put("ns", "k1", {"v": 1})
        assert await backend.delete("ns", "k1") is True
        assert await backend.delete("ns", "k1") is False
        assert await backend.get("ns", "k1") is None

    @pytest.mark.asyncio
    async def test_scan_insertion_order(self, backend):
        for key in ["c", "a", "b"]:
            await backend.put("ns", key, {"id": key})
        assert [r["id"] for r in await backend.scan("ns")] == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_namespaces_isolated(self, backend):
        await backend.put(documents_namespace("a"), "k", {"v": "a"})
        await backend.put(documents_namespace("b"), "k", {"v": "b"})
        assert await backend.get(documents_namespace("a"), "k") == {"v": "a"}
        assert await backend.drop(documents_namespace("a")) == 1
        assert await backend.scan(documents_namespace("a")) == []
        assert await backend.get(documents_namespace("b"), "k") == {"v": "b"}

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, backend):
        await backend.put("ns", "k", {"tags": ["a"]})
        record = await backend.get("ns", "k")
        record["tags"].append("b")
        assert await backend.get("ns", "k") == {"tags": ["a"]}


class TestInMemoryBackend:
    """Tests specific to InMemoryBackend."""

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        backend = InMemoryBackend()
        with pytest.raises(StorageConnectionError):
            await backend.get("ns", "k")

    @pytest.mark.asyncio
    async def test_inject_failure_once(self):
        backend = InMemoryBackend()
        await backend.connect()
        backend.inject_failure()
        with pytest.raises(StorageError):
            await backend.put("ns", "k", {})
        await backend.put("ns", "k", {})
        assert backend.get_record_count("ns") == 1


class TestSqliteBackend:
    """Tests specific to SqliteBackend."""

    @pytest.mark.asyncio
    async def test_data_survives_reconnect(self, data_dir):
        backend = SqliteBackend(data_dir)
        await backend.connect()
        await backend.put("ns", "k", {"v": 1})
        await backend.close()

        reopened = SqliteBackend(data_dir)
        await reopened.connect()
        assert await reopened.get("ns", "k") == {"v": 1}
        assert await reopened.get_stats() == {"ns": 1}

    @pytest.mark.asyncio
    async def test_requires_connection(self, data_dir):
        backend = SqliteBackend(data_dir)
        with pytest.raises(StorageConnectionError):
            await backend.scan("ns")

    @pytest.mark.asyncio
    async def test_scan_order_survives_vacuum(self, data_dir):
        backend = SqliteBackend(data_dir)
        await backend.connect()
        for key in ["a", "b", "c"]:
            await backend.put("ns", key, {"k": key})
        await backend.delete("ns", "a")
        await backend.put("ns", "d", {"k": "d"})
        await backend.put("ns", "b", {"k": "b", "v": 2})

        conn = sqlite3.connect(str(backend.db_path))
        conn.execute("VACUUM")
        conn.close()

        assert [r["k"] for r in await backend.scan("ns")] == ["b", "c", "d"]

    @pytest.mark.asyncio
    async def test_migrates_version_1_table(self, data_dir):
        conn = sqlite3.connect(str(Path(data_dir) / "docbase.db"))
        conn.executescript("""
            CREATE TABLE records (
                namespace TEXT NOT NULL,
                record_key TEXT NOT NULL,
                body_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (namespace, record_key)
            );
            CREATE INDEX idx_records_namespace ON records(namespace);
            INSERT INTO records VALUES ('ns', 'z', '{"k": "z"}', 1);
            INSERT INTO records VALUES ('ns', 'a', '{"k": "a"}', 2);
        """)
        conn.close()

        backend = SqliteBackend(data_dir)
        await backend.connect()
        await backend.put("ns", "m", {"k": "m"})

        assert [r["k"] for r in await backend.scan("ns")] == ["z", "a", "m"]
        conn = sqlite3.connect(str(backend.db_path))
        columns = [row[1] for row in conn.execute("PRAGMA table_info(records)")]
        versions = [row[0] for row in conn.execute("SELECT version FROM schema_version")]
        conn.close()
        assert columns[0] == "seq"
        assert 2 in versions


class TestCreateBackend:
    """Tests for the backend factory."""

    def test_memory(self):
        backend = create_backend(StorageConfig(backend=StorageBackend.MEMORY))
        assert isinstance(backend, InMemoryBackend)

    def test_sqlite(self, data_dir):
        backend = create_backend(StorageConfig(backend=StorageBackend.SQLITE, data_dir=data_dir))
        assert isinstance(backend, SqliteBackend)
        assert backend.db_path == Path(data_dir) / "docbase.db"
