"""Embedding backend interface consumed by the indexing pipeline and the retriever."""

from typing import List, Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class EmbeddingBackend(Protocol):
    """Opaque text -> vector capability.

    ``embed`` returns one vector per input text, all of the same length for a
    given backend instance. ``embedding_dimension`` may be None until the
    backend has produced a vector.
    """

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...

    @property
    def embedding_dimension(self) -> Optional[int]:
        ...
