"""Document ingestion: chunking, validation, change detection and the indexing pipeline."""

from .chunkers import ChunkerFactory, CodeChunker, OverlapChunker, validate_content
from .indexing_pipeline import IndexingPipeline
from .models import IndexingResult, SourceDocument
from .snapshot import SnapshotStore, fingerprint

__all__ = [
    "ChunkerFactory",
    "CodeChunker",
    "IndexingPipeline",
    "IndexingResult",
    "OverlapChunker",
    "SnapshotStore",
    "SourceDocument",
    "fingerprint",
    "validate_content",
]
