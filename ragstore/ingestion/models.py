"""
Ingestion data models.

``SourceDocument`` is what callers hand to the pipeline; ``IndexingResult``
is what a corpus-level run reports back.
"""

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field

from ragstore.storage.models import MetadataDict
from ragstore.utils.exceptions import BinaryContentError, EmptyContentError, IndexingError


class SourceDocument(BaseModel):
    """A document known to the host application."""

    source_id: str = Field(description="Stable document identifier, used as the chunk source id")
    title: str = Field(default="", description="Display title")
    kind: str = Field(default="generic", description="generic, text, markdown or code")
    updated_at: float = Field(default=0.0, description="Last modification, seconds since epoch")
    content: Optional[str] = Field(default=None, description="Inline text content")
    path: Optional[Path] = Field(default=None, description="File to read when content is not inline")
    metadata: Optional[MetadataDict] = Field(default=None, description="Extra metadata for every chunk")

    def load_text(self) -> str:
        if self.content is not None:
            return self.content
        if self.path is None:
            raise EmptyContentError()
        try:
            return self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise BinaryContentError() from e
        except OSError as e:
            raise IndexingError(f"Could not read {self.path}: {e}", error_code="READ_FAILED") from e

    def chunk_metadata(self) -> MetadataDict:
        """Metadata attached to each chunk of this document."""
        meta: MetadataDict = dict(self.metadata or {})
        meta.update({"title": self.title or self.source_id, "kind": self.kind, "document_id": self.source_id})
        return meta


class IndexingResult(BaseModel):
    """Summary of a multi-document indexing run."""

    indexed: int = 0
    skipped: int = 0
    skip_reasons: Dict[str, int] = Field(default_factory=dict)
    chunks_created: int = 0
    cancelled: bool = False

    def record_indexed(self, chunk_count: int) -> None:
        self.indexed += 1
        self.chunks_created += chunk_count

    def record_skip(self, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    @property
    def summary(self) -> str:
        parts = [f"Indexed: {self.indexed} documents"]
        if self.chunks_created > 0:
            parts.append(f"{self.chunks_created} chunks")
        if self.skipped > 0:
            parts.append(f"Skipped: {self.skipped}")
            reasons = ", ".join(f"{k} ({v})" for k, v in self.skip_reasons.items())
            if reasons:
                parts.append(f"[{reasons}]")
        if self.cancelled:
            parts.append("Cancelled")
        return " • ".join(parts)
