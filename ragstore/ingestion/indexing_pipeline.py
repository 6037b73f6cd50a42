"""
Indexing pipeline: turns documents into embedded chunks in a ChunkStore.

Each document is validated, chunked with the chunker for its kind, embedded
in batches, and written with a single ``upsert_chunks`` call, so a failure
anywhere leaves that document's previous rows untouched. Corpus-level runs
(full rebuild, change-detected reindex) record per-document failures and
keep going.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Sequence

from ragstore.config import config
from ragstore.embeddings.backend import EmbeddingBackend
from ragstore.embeddings.backend_manager import BackendManager
from ragstore.ingestion.chunkers import ChunkerFactory, validate_content
from ragstore.ingestion.models import IndexingResult, SourceDocument
from ragstore.ingestion.snapshot import SnapshotStore
from ragstore.ingestion.snapshot import fingerprint as corpus_fingerprint
from ragstore.storage.chunk_store import ChunkStore
from ragstore.storage.models import Chunk, MetadataDict
from ragstore.utils.exceptions import (
    BinaryContentError,
    DimensionMismatch,
    EmbeddingError,
    EmptyContentError,
    FileTooLargeError,
    IncompatibleEmbedding,
    IndexingError,
    RebuildInProgressError,
)
from ragstore.utils.logger import logger
from ragstore.utils.logging_context import bind_to_current_context, trace_context

# Failures that skip one document during a corpus run
_RECOVERABLE = (IndexingError, EmbeddingError, DimensionMismatch, IncompatibleEmbedding)


def _skip_reason(error: Exception) -> str:
    if isinstance(error, FileTooLargeError):
        return "too large"
    if isinstance(error, BinaryContentError):
        return "binary"
    if isinstance(error, EmptyContentError):
        return "empty"
    if isinstance(error, DimensionMismatch):
        return "dimension mismatch"
    if isinstance(error, IncompatibleEmbedding):
        return "incompatible embedding"
    if isinstance(error, EmbeddingError):
        return "embedding failed"
    return "unreadable"


class IndexingPipeline:
    """Chunk, embed and store documents."""

    def __init__(
        self,
        store: ChunkStore,
        backend_manager: BackendManager,
        chunker_factory: Optional[ChunkerFactory] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        batch_size: Optional[int] = None,
        max_file_size_bytes: Optional[int] = None,
    ):
        self.store = store
        self.backend_manager = backend_manager
        self.chunker_factory = chunker_factory or ChunkerFactory()
        self.snapshot_store = snapshot_store or SnapshotStore()
        self.batch_size = batch_size or int(config.get("embedding.batch_size", 32))
        self.max_file_size_bytes = max_file_size_bytes

        self._active_indexing = 0
        self._counter_lock = threading.Lock()
        self._rebuild_lock = threading.Lock()
        self._active_cancel: Optional[threading.Event] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Bookkeeping

    @property
    def is_indexing(self) -> bool:
        with self._counter_lock:
            return self._active_indexing > 0

    @contextmanager
    def _indexing_scope(self) -> Iterator[None]:
        with self._counter_lock:
            self._active_indexing += 1
        try:
            yield
        finally:
            with self._counter_lock:
                self._active_indexing -= 1

    @contextmanager
    def _backend_session(self) -> Iterator[EmbeddingBackend]:
        """Use the resident backend, loading it if needed and unloading it afterwards if we loaded it."""
        with self.backend_manager.session() as (backend, created):
            if created:
                logger.debug("Embedding backend loaded for indexing")
            yield backend

    # ------------------------------------------------------------------
    # Single documents

    def index_document(
        self,
        source_id: str,
        content: str,
        kind: str = "generic",
        metadata: Optional[MetadataDict] = None,
    ) -> int:
        """Replace the chunks of ``source_id`` with chunks of ``content``. Returns the chunk count."""
        with self._indexing_scope(), self._backend_session() as backend:
            return self._index_with_backend(backend, source_id, content, kind, metadata)

    def index_source_document(self, document: SourceDocument) -> int:
        text = document.load_text()
        return self.index_document(document.source_id, text, kind=document.kind, metadata=document.chunk_metadata())

    def delete_document(self, source_id: str) -> None:
        self.store.delete_chunks(source_id)
        logger.info(f"Removed document {source_id} from the index")

    def reset(self) -> None:
        """Forget the corpus fingerprint and wipe the store."""
        self.snapshot_store.clear()
        self.store.clear()
        logger.info("Index reset")

    def _embed(self, backend: EmbeddingBackend, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            try:
                vectors.extend(backend.embed(batch))
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(f"Embedding backend failed: {e}") from e
        return vectors

    def _index_with_backend(
        self,
        backend: EmbeddingBackend,
        source_id: str,
        content: str,
        kind: str,
        metadata: Optional[MetadataDict],
    ) -> int:
        validate_content(content, self.max_file_size_bytes)
        pieces = self.chunker_factory.for_kind(kind).chunk(content)
        if not pieces:
            raise EmptyContentError()

        vectors = self._embed(backend, [p["text"] for p in pieces])
        if len(vectors) != len(pieces):
            raise EmbeddingError(
                f"Embedding backend returned {len(vectors)} vectors for {len(pieces)} chunks",
                details={"source_id": source_id},
            )

        chunks = []
        for piece, vector in zip(pieces, vectors):
            chunk_meta: MetadataDict = dict(metadata or {})
            chunk_meta["chunk_type"] = piece["chunk_type"]
            if "line_start" in piece:
                chunk_meta["line_start"] = piece["line_start"]
                chunk_meta["line_end"] = piece["line_end"]
            chunks.append(
                Chunk(
                    source_id=source_id,
                    chunk_index=piece["chunk_index"],
                    content=piece["text"],
                    embedding=[float(v) for v in vector],
                    metadata=chunk_meta,
                )
            )

        self.store.upsert_chunks(chunks)
        logger.info(f"Indexed {source_id}: {len(chunks)} chunks")
        return len(chunks)

    def _index_into(self, backend: EmbeddingBackend, document: SourceDocument, result: IndexingResult) -> None:
        try:
            text = document.load_text()
            count = self._index_with_backend(
                backend, document.source_id, text, document.kind, document.chunk_metadata()
            )
        except _RECOVERABLE as e:
            reason = _skip_reason(e)
            logger.warning(f"Skipping {document.source_id} ({reason}): {e}")
            result.record_skip(reason)
        else:
            result.record_indexed(count)

    # ------------------------------------------------------------------
    # Corpus runs

    def fingerprint(self, documents: Iterable[SourceDocument]) -> str:
        return corpus_fingerprint(documents)

    @contextmanager
    def _corpus_run(self, cancel_event: Optional[threading.Event]) -> Iterator[threading.Event]:
        """Hold the one-run-at-a-time lock; ``cancel()`` targets this run's event while it lasts."""
        if not self._rebuild_lock.acquire(blocking=False):
            raise RebuildInProgressError()
        event = cancel_event if cancel_event is not None else threading.Event()
        self._active_cancel = event
        try:
            yield event
        finally:
            self._active_cancel = None
            self._rebuild_lock.release()

    def rebuild_corpus(
        self,
        documents: Iterable[SourceDocument],
        cancel_event: Optional[threading.Event] = None,
    ) -> IndexingResult:
        """Clear the store and index every document.

        Only one corpus run may be active; a second call raises
        RebuildInProgressError. Cancellation is checked between documents.
        The fingerprint is persisted only when the run completes.
        """
        docs = list(documents)
        with self._corpus_run(cancel_event) as cancel_event, trace_context(reuse=True), self._indexing_scope():
            result = IndexingResult()
            logger.info(f"Rebuilding index for {len(docs)} documents")
            self.snapshot_store.clear()
            self.store.clear()

            with self._backend_session() as backend:
                for doc in docs:
                    if cancel_event.is_set():
                        result.cancelled = True
                        logger.info("Index rebuild cancelled")
                        break
                    self._index_into(backend, doc, result)

            if not result.cancelled:
                self.snapshot_store.save(corpus_fingerprint(docs))
            logger.info(f"Rebuild finished. {result.summary}")
            return result

    def reindex_if_needed(
        self,
        documents: Iterable[SourceDocument],
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[IndexingResult]:
        """Re-index incrementally when the corpus fingerprint changed.

        Returns None when nothing was done (auto-indexing disabled, or the
        stored fingerprint matches an already built index). A cancelled run
        stops between documents and leaves the fingerprint unsaved, so the
        next call re-indexes.
        """
        if not force and not config.get("indexing.auto_indexing_enabled", True):
            logger.debug("Auto-indexing disabled; skipping change detection")
            return None

        docs = list(documents)
        current = corpus_fingerprint(docs)
        if not force and self.snapshot_store.index_built() and self.snapshot_store.load() == current:
            logger.debug("Corpus unchanged; index is up to date")
            return None

        with self._corpus_run(cancel_event) as cancel_event, trace_context(reuse=True), self._indexing_scope():
            result = IndexingResult()
            wanted = {d.source_id for d in docs}
            stale = {c.source_id for c in self.store.get_all_chunks()} - wanted
            for source_id in sorted(stale):
                self.store.delete_chunks(source_id)
            if stale:
                logger.info(f"Removed {len(stale)} documents no longer in the corpus")

            if docs:
                with self._backend_session() as backend:
                    for doc in docs:
                        if cancel_event.is_set():
                            result.cancelled = True
                            logger.info("Reindex cancelled")
                            break
                        self._index_into(backend, doc, result)

            if not result.cancelled:
                self.snapshot_store.save(current)
            logger.info(f"Reindex finished. {result.summary}")
            return result

    # ------------------------------------------------------------------
    # Background execution

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                workers = int(config.get("indexing.max_workers", 1))
                self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ragstore_index")
            return self._executor

    def rebuild_async(self, documents: Iterable[SourceDocument]) -> "Future[IndexingResult]":
        """Run ``rebuild_corpus`` on a background thread.

        ``cancel()`` stops whichever corpus run is active; a run still queued
        behind it can be dropped with ``Future.cancel()``.
        """
        docs = list(documents)
        return self._get_executor().submit(bind_to_current_context(self.rebuild_corpus), docs)

    def cancel(self) -> bool:
        """Ask the active corpus run to stop before its next document. Returns False if none is running."""
        event = self._active_cancel
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for the active indexing run")
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
