"""
ragstore exceptions
Exception classes for the vector store, the embedding backend and the indexing pipeline.
"""

from typing import Any, Dict, Optional


class RagStoreError(Exception):
    """Base exception class for all ragstore errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self):
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class VectorStoreError(RagStoreError):
    """Errors raised by the on-disk chunk store."""
    pass


class DimensionMismatch(VectorStoreError):
    """A write disagreed with the store's embedding dimension or with its own batch."""

    def __init__(self, expected: int, got: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}D but got {got}D. "
            "Clear the vector store before using a different embedding model.",
            error_code="DIMENSION_MISMATCH",
            details={"expected": expected, "got": got},
        )
        self.expected = expected
        self.got = got


class IncompatibleEmbedding(VectorStoreError):
    """A zero-length embedding was supplied."""

    def __init__(self, message: str = "Incompatible embedding format: embedding is empty"):
        super().__init__(message, error_code="INCOMPATIBLE_EMBEDDING")


class CorruptedDatabase(VectorStoreError):
    """Schema or file-level damage; rebuild the store from the source documents."""

    def __init__(self, reason: str):
        super().__init__(
            f"Vector store database is corrupted: {reason}",
            error_code="CORRUPTED_DATABASE",
            details={"reason": reason},
        )
        self.reason = reason


class StoreIOError(VectorStoreError):
    """Open or transaction failure reported by the database engine."""

    def __init__(self, message: str):
        super().__init__(message, error_code="STORE_IO")


class EmbeddingError(RagStoreError):
    """Errors related to embedding generation."""
    pass


class ModelLoadError(RagStoreError):
    """Errors related to loading an embedding backend."""
    pass


class IndexingError(RagStoreError):
    """A document could not be turned into chunks."""
    pass


class FileTooLargeError(IndexingError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            f"File too large ({size / 1_000_000:.1f}MB, limit: {limit / 1_000_000:.1f}MB)",
            error_code="FILE_TOO_LARGE",
            details={"size": size, "limit": limit},
        )


class BinaryContentError(IndexingError):
    def __init__(self):
        super().__init__("Binary content detected", error_code="BINARY_CONTENT")


class EmptyContentError(IndexingError):
    def __init__(self):
        super().__init__("Empty or whitespace-only content", error_code="EMPTY_CONTENT")


class RebuildInProgressError(RagStoreError):
    """A full-corpus rebuild was requested while another one is running."""

    def __init__(self):
        super().__init__(
            "Knowledge rebuild already in progress", error_code="REBUILD_IN_PROGRESS"
        )
