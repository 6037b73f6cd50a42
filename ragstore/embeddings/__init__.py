"""Embedding backends and their lifecycle manager.

The sentence-transformers backend is not imported here so that importing
the package does not pull in torch.
"""

from .backend import EmbeddingBackend
from .backend_manager import BackendManager

__all__ = ["BackendManager", "EmbeddingBackend"]
