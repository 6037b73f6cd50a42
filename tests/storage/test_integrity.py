"""Integrity scan tests: the report never raises and names each problem found."""

import sqlite3

from ragstore.storage.chunk_store import DIMENSION_KEY, serialize_embedding


def _raw_insert(store, source_id, chunk_index, embedding_blob):
    store._conn.execute(
        "INSERT INTO documents (source_id, chunk_index, content, embedding, metadata, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, NULL, 0, 0)",
        (source_id, chunk_index, "text", embedding_blob),
    )


def test_healthy_store(store, chunk_factory):
    store.upsert_chunks([chunk_factory("a", i, [1.0, 0.0, 0.0, 0.0]) for i in range(3)])
    health = store.check_integrity()

    assert health.is_healthy
    assert health.table_present
    assert health.chunk_count == 3
    assert health.embedding_dimension == 4
    assert health.summary == "Vector store healthy: 3 chunks, dimension 4"


def test_empty_store_is_healthy(store):
    health = store.check_integrity()
    assert health.is_healthy
    assert health.chunk_count == 0
    assert health.embedding_dimension is None


def test_mixed_dimensions_reported(store, chunk_factory):
    store.upsert_chunks([chunk_factory("a", 0, [1.0, 0.0, 0.0, 0.0])])
    _raw_insert(store, "b", 0, serialize_embedding([1.0] * 8))

    health = store.check_integrity()
    assert not health.is_healthy
    assert "Inconsistent embedding dimensions found (4D, 8D)" in health.issues
    assert health.summary.startswith("Issues found: ")


def test_stored_dimension_disagreement_reported(store, chunk_factory):
    store.upsert_chunks([chunk_factory("a", 0, [1.0, 0.0])])
    store._conn.execute("UPDATE vector_metadata SET value = '5' WHERE key = ?", (DIMENSION_KEY,))

    health = store.check_integrity()
    assert "Stored dimension (5) doesn't match actual (2)" in health.issues


def test_malformed_blob_reported(store, chunk_factory):
    store.upsert_chunks([chunk_factory("a", 0, [1.0, 0.0])])
    _raw_insert(store, "b", 0, b"\x01\x02\x03")

    health = store.check_integrity()
    assert "Malformed embedding blobs found" in health.issues


def test_missing_dimension_reported(store):
    _raw_insert(store, "a", 0, serialize_embedding([1.0, 2.0]))
    health = store.check_integrity()
    assert "Stored dimension missing for a non-empty store" in health.issues


def test_missing_documents_table(store):
    store._conn.execute("DROP TABLE documents")
    health = store.check_integrity()

    assert not health.table_present
    assert health.issues == ["Documents table missing"]


def test_missing_metadata_table(store, chunk_factory):
    store.upsert_chunks([chunk_factory("a", 0, [1.0])])
    store._conn.execute("DROP TABLE vector_metadata")
    health = store.check_integrity()

    assert health.table_present
    assert "Metadata table missing" in health.issues


def test_integrity_check_is_read_only(store, chunk_factory):
    store.upsert_chunks([chunk_factory("a", 0, [1.0, 0.0])])
    before = store._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
    store.check_integrity()
    store.check_integrity()
    after = store._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
    assert before == after == 1


def test_unreadable_database_reported(tmp_path, store, monkeypatch):
    class BrokenConnection:
        def execute(self, *args, **kwargs):
            raise sqlite3.DatabaseError("database disk image is malformed")

        def close(self):
            pass

    real = store._conn
    monkeypatch.setattr(store, "_conn", BrokenConnection())
    try:
        health = store.check_integrity()
    finally:
        monkeypatch.setattr(store, "_conn", real)

    assert not health.table_present
    assert health.issues == ["Database unreadable: database disk image is malformed"]
