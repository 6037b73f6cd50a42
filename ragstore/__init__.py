"""Top-level package marker for ragstore, an embedded vector store for local RAG."""

from .embeddings.backend_manager import BackendManager
from .ingestion.indexing_pipeline import IndexingPipeline
from .ingestion.models import IndexingResult, SourceDocument
from .retrieval.retriever import Retriever, build_context_block
from .storage.chunk_store import ChunkStore, SQLiteChunkStore
from .storage.models import Chunk, RetrievedChunk, StoreHealth

__version__ = "0.1.0"

__all__ = [
    "BackendManager",
    "Chunk",
    "ChunkStore",
    "IndexingPipeline",
    "IndexingResult",
    "Retriever",
    "RetrievedChunk",
    "SQLiteChunkStore",
    "SourceDocument",
    "StoreHealth",
    "build_context_block",
    "config",
    "embeddings",
    "ingestion",
    "retrieval",
    "storage",
    "utils",
]
