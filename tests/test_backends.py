"""Tests for the reference collaborator implementations."""

import json

import pytest

from backends import (
    CallbackVerifier,
    FileBlobSink,
    InMemoryBlobSink,
    InMemoryLedgerClient,
    InMemoryPersistence,
    JsonFilePersistence,
    SqlitePersistence,
    StaticVerifier,
)
from drive.config import Config
from drive.services import StorageCatalog


class TestBlobSinks:
    """Test blob sink put/get."""

    @pytest.mark.asyncio
    async def test_in_memory_round_trip(self):
        sink = InMemoryBlobSink()
        ref = await sink.put(b"bytes")
        assert await sink.get(ref) == b"bytes"
        assert len(sink) == 1

    @pytest.mark.asyncio
    async def test_in_memory_unknown_ref(self):
        with pytest.raises(KeyError):
            await InMemoryBlobSink().get("mem://nope")

    @pytest.mark.asyncio
    async def test_file_sink_round_trip(self, tmp_path):
        sink = FileBlobSink(tmp_path / "blobs")
        ref = await sink.put(b"on disk")

        assert ref.endswith(".blob")
        assert (tmp_path / "blobs" / ref).read_bytes() == b"on disk"
        assert await sink.get(ref) == b"on disk"

    @pytest.mark.asyncio
    async def test_file_sink_delete(self, tmp_path):
        sink = FileBlobSink(tmp_path)
        ref = await sink.put(b"gone soon")
        assert sink.delete(ref) is True
        assert sink.delete(ref) is False

    @pytest.mark.asyncio
    async def test_file_sink_rejects_path_traversal(self, tmp_path):
        sink = FileBlobSink(tmp_path)
        with pytest.raises(ValueError):
            await sink.get("../secret.blob")

    @pytest.mark.asyncio
    async def test_file_sink_missing_blob(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await FileBlobSink(tmp_path).get("missing.blob")


class TestLedgerClient:
    """Test the in-memory ledger."""

    @pytest.mark.asyncio
    async def test_commit_and_fetch(self):
        ledger = InMemoryLedgerClient()
        ref = await ledger.commit_record(b"record")

        assert len(ref) == 64
        int(ref, 16)
        assert await ledger.fetch_record(ref) == b"record"
        assert ledger.committed() == [b"record"]

    @pytest.mark.asyncio
    async def test_fetch_unknown(self):
        with pytest.raises(KeyError):
            await InMemoryLedgerClient().fetch_record("0" * 64)

    @pytest.mark.asyncio
    async def test_fail_after(self):
        ledger = InMemoryLedgerClient(fail_after=1)
        await ledger.commit_record(b"first")
        with pytest.raises(ConnectionError):
            await ledger.commit_record(b"second")
        assert ledger.commit_count == 1


class TestVerifiers:
    """Test condition verifiers."""

    @pytest.mark.asyncio
    async def test_static(self):
        verifier = StaticVerifier(False)
        assert await verifier.verify({}) is False
        assert verifier.calls == 1

    @pytest.mark.asyncio
    async def test_callback_coerces_to_bool(self):
        assert await CallbackVerifier(lambda p: p.get("count")).verify({"count": 2}) is True
        assert await CallbackVerifier(lambda p: p.get("count")).verify({}) is False


class TestPersistence:
    """Test snapshot persistence backends."""

    def test_in_memory_copies_state(self):
        persistence = InMemoryPersistence()
        state = {"version": "1.0", "files": []}
        persistence.save_snapshot(state)
        state["files"].append("mutated")

        assert persistence.load_snapshot() == {"version": "1.0", "files": []}
        assert persistence.save_calls == 1

    def test_in_memory_empty(self):
        assert InMemoryPersistence().load_snapshot() is None

    def test_json_file_round_trip(self, tmp_path):
        persistence = JsonFilePersistence(tmp_path / "state" / "catalog.json")
        persistence.save_snapshot({"version": "1.0", "files": [{"id": "a"}]})

        assert persistence.load_snapshot() == {"version": "1.0", "files": [{"id": "a"}]}
        assert not (tmp_path / "state" / "catalog.json.tmp").exists()

    def test_json_file_from_config(self, tmp_path):
        config = Config(snapshot_path=str(tmp_path / "configured" / "catalog.json"))
        persistence = JsonFilePersistence.from_config(config)
        persistence.save_snapshot({"version": "1.0", "files": []})

        assert persistence.path == tmp_path / "configured" / "catalog.json"
        assert json.loads(persistence.path.read_text()) == {"version": "1.0", "files": []}

    def test_json_file_missing(self, tmp_path):
        assert JsonFilePersistence(tmp_path / "absent.json").load_snapshot() is None

    def test_json_file_corrupted_is_backed_up(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("{ not json")

        assert JsonFilePersistence(path).load_snapshot() is None
        assert (tmp_path / "catalog.json.bak").read_text() == "{ not json"

    def test_json_file_non_object(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps([1, 2, 3]))
        assert JsonFilePersistence(path).load_snapshot() is None

    def test_sqlite_round_trip(self, tmp_path):
        persistence = SqlitePersistence(tmp_path / "catalog.db")
        assert persistence.load_snapshot() is None

        persistence.save_snapshot({"version": "1.0", "files": []})
        persistence.save_snapshot({"version": "1.0", "files": [{"id": "b"}]})

        assert persistence.load_snapshot() == {"version": "1.0", "files": [{"id": "b"}]}
        with persistence.get_db_connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM catalog_snapshot").fetchone()[0]
        assert count == 1

    def test_sqlite_corrupted_document(self, tmp_path):
        persistence = SqlitePersistence(tmp_path / "catalog.db")
        with persistence.get_db_connection() as conn:
            conn.execute(
                "INSERT INTO catalog_snapshot (snapshot_id, document, saved_at) VALUES (1, ?, ?)",
                ("garbage", "2024-01-01T00:00:00"),
            )
            conn.commit()
        assert persistence.load_snapshot() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ["json", "sqlite"])
    async def test_catalog_survives_restart(self, tmp_path, config, backend):
        def open_persistence():
            if backend == "json":
                return JsonFilePersistence(tmp_path / "catalog.json")
            return SqlitePersistence(tmp_path / "catalog.db")

        sink = FileBlobSink(tmp_path / "blobs")
        ledger = InMemoryLedgerClient()
        catalog = StorageCatalog(sink, ledger, open_persistence(), config=config)
        entry = await catalog.upload(b"durable" * 20, "d.bin", "application/octet-stream", encrypt=True, passphrase="pw")

        reopened = StorageCatalog(sink, ledger, open_persistence(), config=config)

        assert reopened.get(entry.id).encryption == entry.encryption
        assert reopened.get(entry.id).manifest == entry.manifest
        assert await reopened.download(entry.id, passphrase="pw") == b"durable" * 20
