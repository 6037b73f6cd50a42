"""
Exact similarity search over stored chunks.

Two interchangeable strategies:
- ``linear_scan``: per-chunk cosine similarity in plain Python, always correct
- ``SimilarityCache``: row-normalized float32 matrix built once and reused,
  scoring every chunk with a single matrix-vector product

Both rank by descending score with ties kept in storage order, so callers can
switch between them freely.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ragstore.storage.models import Chunk, MetadataDict, RetrievedChunk
from ragstore.utils.logger import logger

# Added to vector norms so zero vectors normalize to zero instead of NaN
NORM_EPSILON = 1e-6


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 when either norm is zero."""
    if len(vec_a) != len(vec_b) or len(vec_a) == 0:
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    magnitude_a = math.sqrt(sum(a * a for a in vec_a))
    magnitude_b = math.sqrt(sum(b * b for b in vec_b))

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return dot_product / (magnitude_a * magnitude_b)


def _hit(chunk_fields, score: float) -> RetrievedChunk:
    return RetrievedChunk(
        source_id=chunk_fields.source_id,
        chunk_index=chunk_fields.chunk_index,
        content=chunk_fields.content,
        metadata=chunk_fields.metadata,
        score=float(score),
    )


def linear_scan(query: Sequence[float], chunks: Sequence[Chunk], top_k: int) -> List[RetrievedChunk]:
    """Score every chunk whose dimension matches the query and return the best ``top_k``.

    ``chunks`` must be in storage order; ``sorted`` is stable, so equal scores
    keep that order.
    """
    if top_k <= 0 or len(query) == 0:
        return []

    scored = []
    for chunk in chunks:
        if len(chunk.embedding) != len(query):
            continue
        scored.append((cosine_similarity(query, chunk.embedding), chunk))

    scored.sort(key=lambda item: -item[0])
    return [_hit(chunk, score) for score, chunk in scored[:top_k]]


@dataclass(frozen=True)
class CacheRow:
    source_id: str
    chunk_index: int
    content: str
    metadata: Optional[MetadataDict]


class SimilarityCache:
    """Normalized embedding matrix plus the row data needed to build hits."""

    def __init__(self, normalized: np.ndarray, rows: List[CacheRow]):
        self.normalized = normalized
        self.rows = rows

    @property
    def dimension(self) -> int:
        return int(self.normalized.shape[1])

    def __len__(self) -> int:
        return len(self.rows)

    @classmethod
    def build(cls, chunks: Sequence[Chunk]) -> Optional["SimilarityCache"]:
        """Build a cache from chunks in storage order.

        Returns None when there is nothing to build from or the embeddings do
        not share one dimension.
        """
        if not chunks:
            return None

        dimension = len(chunks[0].embedding)
        if dimension == 0:
            return None
        if any(len(c.embedding) != dimension for c in chunks):
            logger.debug("Similarity cache not built: stored embeddings have mixed dimensions")
            return None

        matrix = np.asarray([c.embedding for c in chunks], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        normalized = matrix / (norms + NORM_EPSILON)
        rows = [CacheRow(c.source_id, c.chunk_index, c.content, c.metadata) for c in chunks]
        logger.debug(f"Built similarity cache ({len(rows)} x {dimension})")
        return cls(normalized, rows)

    def search(self, query: Sequence[float], top_k: int) -> Optional[List[RetrievedChunk]]:
        """Rank all rows against ``query``; None if the query dimension does not match."""
        if top_k <= 0 or len(query) == 0:
            return []
        if len(query) != self.dimension:
            return None

        q = np.asarray(query, dtype=np.float32)
        q = q / (np.linalg.norm(q) + NORM_EPSILON)
        scores = self.normalized @ q
        if scores.shape[0] != len(self.rows):
            return None

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [_hit(self.rows[i], scores[i]) for i in order]
