"""
SQLite-backed chunk store for local retrieval.

Resource model:
- Chunk text, metadata and float32 embeddings live in one SQLite file
- A single store-wide lock serializes every operation, so searches never see
  a half-written source
- The normalized search matrix is a lazily built, owned cache that every
  mutation drops
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

import numpy as np

from ragstore.config import config
from ragstore.retrieval.similarity import SimilarityCache, linear_scan
from ragstore.storage.models import Chunk, RetrievedChunk, StoreHealth
from ragstore.utils.exceptions import (
    CorruptedDatabase,
    DimensionMismatch,
    IncompatibleEmbedding,
    StoreIOError,
    VectorStoreError,
)
from ragstore.utils.logger import logger

DIMENSION_KEY = "embedding_dimension"
# Little-endian float32, independent of host byte order
EMBEDDING_DTYPE = np.dtype("<f4")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    embedding BLOB NOT NULL,
    metadata TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_source
ON documents (source_id, chunk_index);

CREATE TABLE IF NOT EXISTS vector_metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def serialize_embedding(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=EMBEDDING_DTYPE).tobytes()


def deserialize_embedding(blob: bytes) -> List[float]:
    if len(blob) % EMBEDDING_DTYPE.itemsize:
        raise CorruptedDatabase(f"embedding blob of {len(blob)} bytes is not a float32 array")
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).tolist()


class ChunkStore:
    """Interface every chunk store implements."""

    def upsert_chunks(self, chunks: Sequence[Chunk]) -> None:
        raise NotImplementedError()

    def search_similar(self, query: Sequence[float], top_k: int) -> List[RetrievedChunk]:
        raise NotImplementedError()

    def delete_chunks(self, source_id: str) -> None:
        raise NotImplementedError()

    def clear(self) -> None:
        raise NotImplementedError()

    def get_all_chunks(self) -> List[Chunk]:
        raise NotImplementedError()

    def check_integrity(self) -> StoreHealth:
        raise NotImplementedError()


class SQLiteChunkStore(ChunkStore):
    """Durable chunk table plus the store-wide embedding dimension.

    The first successful upsert fixes the dimension; later upserts must match
    it until ``clear()`` resets it.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        accelerated: Optional[bool] = None,
        busy_timeout: Optional[float] = None,
    ):
        self.db_path = str(db_path or config.get("store.db_path", "./data/rag_vectors.db"))
        self.accelerated = (
            bool(config.get("store.accelerated_search", True)) if accelerated is None else accelerated
        )
        timeout = busy_timeout if busy_timeout is not None else float(config.get("store.busy_timeout", 30.0))

        self._lock = threading.RLock()
        self._similarity_cache: Optional[SimilarityCache] = None

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            # Transactions are issued explicitly; the lock keeps the shared
            # connection on one thread at a time.
            self._conn = sqlite3.connect(
                self.db_path, timeout=timeout, isolation_level=None, check_same_thread=False
            )
        except sqlite3.Error as e:
            raise StoreIOError(f"Failed to open vector store database {self.db_path}: {e}") from e

        try:
            with self._errors("schema creation"):
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA synchronous=NORMAL")
                self._conn.executescript(_SCHEMA)
        except VectorStoreError:
            self._conn.close()
            raise

        logger.info(f"Opened vector store at {self.db_path} (accelerated_search={self.accelerated})")

    # ------------------------------------------------------------------
    # Internal helpers (callers hold self._lock)
    # ------------------------------------------------------------------

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        """Translate sqlite3 failures into the store's error types."""
        try:
            yield
        except VectorStoreError:
            raise
        except sqlite3.OperationalError as e:
            msg = str(e)
            if "no such table" in msg or "no such column" in msg:
                raise CorruptedDatabase(msg) from e
            raise StoreIOError(f"{action} failed: {msg}") from e
        except sqlite3.DatabaseError as e:
            if type(e) is sqlite3.DatabaseError:
                # "file is not a database", "database disk image is malformed"
                raise CorruptedDatabase(str(e)) from e
            raise StoreIOError(f"{action} failed: {e}") from e
        except sqlite3.Error as e:
            raise StoreIOError(f"{action} failed: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def _invalidate_cache(self) -> None:
        self._similarity_cache = None

    def _stored_dimension_locked(self) -> Optional[int]:
        row = self._conn.execute(
            "SELECT value FROM vector_metadata WHERE key = ?", (DIMENSION_KEY,)
        ).fetchone()
        if row is None:
            return None
        try:
            return int(row[0])
        except ValueError as e:
            raise CorruptedDatabase(f"stored embedding dimension {row[0]!r} is not an integer") from e

    def _fetch_all_locked(self) -> List[Chunk]:
        rows = self._conn.execute(
            """
            SELECT source_id, chunk_index, content, embedding, metadata, created_at, updated_at
            FROM documents ORDER BY id
            """
        ).fetchall()

        chunks = []
        for source_id, chunk_index, content, blob, metadata, created_at, updated_at in rows:
            try:
                meta = json.loads(metadata) if metadata is not None else None
            except json.JSONDecodeError as e:
                raise CorruptedDatabase(
                    f"metadata for {source_id}#{chunk_index} is not valid JSON"
                ) from e
            chunks.append(
                Chunk.model_construct(
                    source_id=source_id,
                    chunk_index=chunk_index,
                    content=content,
                    embedding=deserialize_embedding(blob),
                    metadata=meta,
                    created_at=created_at,
                    updated_at=updated_at,
                )
            )
        return chunks

    @staticmethod
    def _validate_batch(chunks: Sequence[Chunk]) -> int:
        """Check a batch is internally consistent and return its dimension."""
        if any(len(c.embedding) == 0 for c in chunks):
            raise IncompatibleEmbedding()

        dimension = len(chunks[0].embedding)
        for chunk in chunks:
            if len(chunk.embedding) != dimension:
                raise DimensionMismatch(expected=dimension, got=len(chunk.embedding))

        seen = set()
        for chunk in chunks:
            key = (chunk.source_id, chunk.chunk_index)
            if key in seen:
                raise VectorStoreError(
                    f"Duplicate chunk {chunk.source_id}#{chunk.chunk_index} in upsert batch",
                    error_code="DUPLICATE_CHUNK",
                )
            seen.add(key)
        return dimension

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def upsert_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Replace every source present in ``chunks`` with the given rows.

        The whole batch is one transaction: either every source is rewritten
        or nothing changes.
        """
        if not chunks:
            return
        dimension = self._validate_batch(chunks)

        with self._lock, self._errors("upsert"):
            stored = self._stored_dimension_locked()
            if stored is not None and stored != dimension:
                raise DimensionMismatch(expected=stored, got=dimension)

            now = time.time()
            with self._transaction() as conn:
                if stored is None:
                    conn.execute(
                        "INSERT OR REPLACE INTO vector_metadata (key, value) VALUES (?, ?)",
                        (DIMENSION_KEY, str(dimension)),
                    )

                created_by_source = {}
                for source_id in dict.fromkeys(c.source_id for c in chunks):
                    row = conn.execute(
                        "SELECT MIN(created_at) FROM documents WHERE source_id = ?", (source_id,)
                    ).fetchone()
                    created_by_source[source_id] = row[0] if row and row[0] is not None else now
                    conn.execute("DELETE FROM documents WHERE source_id = ?", (source_id,))

                conn.executemany(
                    """
                    INSERT INTO documents
                        (source_id, chunk_index, content, embedding, metadata, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            c.source_id,
                            c.chunk_index,
                            c.content,
                            serialize_embedding(c.embedding),
                            json.dumps(c.metadata) if c.metadata is not None else None,
                            created_by_source[c.source_id],
                            now,
                        )
                        for c in chunks
                    ],
                )
            self._invalidate_cache()

        logger.info(
            f"Upserted {len(chunks)} chunks for {len(created_by_source)} sources (dimension={dimension})"
        )

    def search_similar(self, query: Sequence[float], top_k: int) -> List[RetrievedChunk]:
        """Return up to ``top_k`` chunks ranked by cosine similarity to ``query``."""
        if top_k <= 0 or len(query) == 0:
            return []

        with self._lock, self._errors("search"):
            chunks = None
            if self.accelerated:
                if self._similarity_cache is None:
                    chunks = self._fetch_all_locked()
                    self._similarity_cache = SimilarityCache.build(chunks)
                if self._similarity_cache is not None:
                    hits = self._similarity_cache.search(query, top_k)
                    if hits is not None:
                        return hits
                logger.debug("Accelerated search declined; falling back to linear scan")

            if chunks is None:
                chunks = self._fetch_all_locked()
            return linear_scan(query, chunks, top_k)

    def delete_chunks(self, source_id: str) -> None:
        with self._lock, self._errors("delete"):
            with self._transaction() as conn:
                cur = conn.execute("DELETE FROM documents WHERE source_id = ?", (source_id,))
                deleted = cur.rowcount
            self._invalidate_cache()
        logger.info(f"Deleted {deleted} chunks for source {source_id}")

    def clear(self) -> None:
        """Remove every chunk and forget the embedding dimension."""
        with self._lock, self._errors("clear"):
            with self._transaction() as conn:
                conn.execute("DELETE FROM documents")
                conn.execute("DELETE FROM vector_metadata WHERE key = ?", (DIMENSION_KEY,))
            self._invalidate_cache()
        logger.info("Vector store cleared")

    def get_all_chunks(self) -> List[Chunk]:
        with self._lock, self._errors("fetch"):
            return self._fetch_all_locked()

    def count(self) -> int:
        with self._lock, self._errors("count"):
            row = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return row[0] if row else 0

    def embedding_dimension(self) -> Optional[int]:
        with self._lock, self._errors("read dimension"):
            return self._stored_dimension_locked()

    def check_integrity(self) -> StoreHealth:
        """Scan the store read-only and report inconsistencies instead of raising."""
        with self._lock:
            try:
                return self._check_integrity_locked()
            except sqlite3.DatabaseError as e:
                return StoreHealth(table_present=False, issues=[f"Database unreadable: {e}"])

    def _check_integrity_locked(self) -> StoreHealth:
        tables = {
            row[0]
            for row in self._conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "documents" not in tables:
            return StoreHealth(table_present=False, issues=["Documents table missing"])

        issues: List[str] = []
        count = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

        dimension = None
        dimension_recorded = False
        if "vector_metadata" not in tables:
            issues.append("Metadata table missing")
        else:
            row = self._conn.execute(
                "SELECT value FROM vector_metadata WHERE key = ?", (DIMENSION_KEY,)
            ).fetchone()
            if row is not None:
                dimension_recorded = True
                try:
                    dimension = int(row[0])
                except ValueError:
                    issues.append(f"Stored dimension {row[0]!r} is not an integer")

        if count > 0:
            byte_lengths = [
                r[0]
                for r in self._conn.execute(
                    "SELECT length(embedding) FROM documents GROUP BY length(embedding)"
                )
            ]
            malformed = [n for n in byte_lengths if n % EMBEDDING_DTYPE.itemsize]
            if malformed:
                issues.append("Malformed embedding blobs found")
            dims = sorted({n // EMBEDDING_DTYPE.itemsize for n in byte_lengths if n not in malformed})
            if len(dims) > 1:
                issues.append(
                    "Inconsistent embedding dimensions found ("
                    + ", ".join(f"{d}D" for d in dims)
                    + ")"
                )
            elif dims and dimension is not None and dims[0] != dimension:
                issues.append(f"Stored dimension ({dimension}) doesn't match actual ({dims[0]})")
            if not dimension_recorded and "vector_metadata" in tables:
                issues.append("Stored dimension missing for a non-empty store")

        return StoreHealth(
            table_present=True,
            chunk_count=count,
            embedding_dimension=dimension,
            issues=issues,
        )

    def close(self) -> None:
        with self._lock:
            self._invalidate_cache()
            self._conn.close()

    def __enter__(self) -> "SQLiteChunkStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
