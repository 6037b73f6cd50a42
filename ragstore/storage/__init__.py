"""Storage package exports.

Only the data models are imported eagerly; the chunk store lives in
``ragstore.storage.chunk_store`` and is imported from there, since it pulls
in the similarity engine which itself depends on these models.
"""

from .models import Chunk, MetadataDict, RetrievedChunk, StoreHealth

__all__ = ["Chunk", "MetadataDict", "RetrievedChunk", "StoreHealth"]
