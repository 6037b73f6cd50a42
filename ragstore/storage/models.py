"""
Storage data models.

Pydantic models for chunks, search hits and store health. Metadata values are
typed as ``JsonValue`` so arbitrary document metadata (strings, numbers,
booleans, null, lists and nested objects) round-trips through the store with
validation instead of an untyped ``Dict[str, Any]``.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, JsonValue

MetadataDict = Dict[str, JsonValue]


class Chunk(BaseModel):
    """One embedded slice of a source document."""

    source_id: str = Field(description="Identifier of the owning document")
    chunk_index: int = Field(ge=0, description="Position of the chunk within its source")
    content: str = Field(min_length=1, description="Chunk text")
    embedding: List[float] = Field(default_factory=list, description="Dense float32 vector")
    metadata: Optional[MetadataDict] = Field(default=None, description="Free-form document metadata")
    created_at: Optional[float] = Field(default=None, description="Seconds since epoch")
    updated_at: Optional[float] = Field(default=None, description="Seconds since epoch")

    @property
    def dimension(self) -> int:
        return len(self.embedding)


class RetrievedChunk(BaseModel):
    """A search hit: chunk fields without the embedding, plus its cosine score."""

    source_id: str
    chunk_index: int
    content: str
    metadata: Optional[MetadataDict] = None
    score: float = Field(description="Cosine similarity, higher is more similar")


class StoreHealth(BaseModel):
    """Result of a read-only integrity scan."""

    table_present: bool = True
    chunk_count: int = 0
    embedding_dimension: Optional[int] = None
    issues: List[str] = Field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return not self.issues

    @property
    def summary(self) -> str:
        if self.is_healthy:
            return (
                f"Vector store healthy: {self.chunk_count} chunks, "
                f"dimension {self.embedding_dimension or 0}"
            )
        return f"Issues found: {', '.join(self.issues)}"
