"""Query path: embed a question, search the store and format the hits as prompt context."""

from typing import List, Optional, Sequence

from ragstore.config import config
from ragstore.embeddings.backend_manager import BackendManager
from ragstore.storage.chunk_store import ChunkStore
from ragstore.storage.models import RetrievedChunk
from ragstore.utils.exceptions import EmbeddingError
from ragstore.utils.logger import logger

NO_RESULTS_MESSAGE = "No relevant documents found."


class Retriever:
    """Embeds questions with the managed backend and runs similarity search."""

    def __init__(self, store: ChunkStore, backend_manager: BackendManager, load_backend: Optional[bool] = None):
        self.store = store
        self.backend_manager = backend_manager
        # When False, queries never trigger a model load; they return nothing until indexing loaded one
        self.load_backend = (
            load_backend if load_backend is not None else bool(config.get("retrieval.load_backend_on_query", False))
        )

    def retrieve(self, question: str, top_k: Optional[int] = None) -> List[RetrievedChunk]:
        if not question or not question.strip():
            return []
        k = top_k if top_k is not None else int(config.get("retrieval.default_top_k", 6))
        if k <= 0:
            return []

        if self.load_backend:
            backend = self.backend_manager.get_backend()
        else:
            backend = self.backend_manager.current()
            if backend is None:
                logger.debug("No embedding backend loaded; returning no context")
                return []

        try:
            vectors = backend.embed([question])
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to embed query: {e}") from e
        if len(vectors) == 0 or len(vectors[0]) == 0:
            return []

        results = self.store.search_similar(vectors[0], k)
        logger.debug(f"Retrieved {len(results)} chunks for query")
        return results

    def build_prompt(self, question: str, top_k: Optional[int] = None, include_scores: Optional[bool] = None) -> str:
        """Retrieve context for ``question`` and wrap both in a user prompt."""
        context = build_context_block(self.retrieve(question, top_k), include_scores)
        return f"Context:\n{context}\n\nQuestion: {question}"


def build_context_block(chunks: Sequence[RetrievedChunk], include_scores: Optional[bool] = None) -> str:
    """Numbered ``[n] Source: id`` headers, each followed by the chunk text."""
    if not chunks:
        return NO_RESULTS_MESSAGE
    if include_scores is None:
        include_scores = bool(config.get("retrieval.include_scores", False))

    blocks = []
    for i, chunk in enumerate(chunks, start=1):
        header = f"[{i}] Source: {chunk.source_id}"
        if include_scores:
            header += f" (relevance: {chunk.score:.2f})"
        blocks.append(f"{header}\n{chunk.content}")
    return "\n\n".join(blocks)
