import gc
import hashlib
import re
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

ROOT = Path(__file__).parent.parent.resolve()
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ragstore.config import config  # noqa: E402
from ragstore.embeddings.backend_manager import BackendManager  # noqa: E402
from ragstore.ingestion.indexing_pipeline import IndexingPipeline  # noqa: E402
from ragstore.ingestion.snapshot import SnapshotStore  # noqa: E402
from ragstore.storage.chunk_store import SQLiteChunkStore  # noqa: E402
from ragstore.storage.models import Chunk  # noqa: E402


class FakeBackend:
    """Deterministic bag-of-words embedding: each word bumps one hashed bucket."""

    def __init__(self, dimension: int = 8, fail_on: Optional[str] = None):
        self.dimension = dimension
        self.fail_on = fail_on
        self.calls: List[List[str]] = []
        self.closed = False

    @property
    def embedding_dimension(self) -> Optional[int]:
        return self.dimension

    def _vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        return vec

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail_on is not None and any(self.fail_on in t for t in texts):
            raise RuntimeError(f"cannot embed text containing {self.fail_on!r}")
        return [self._vector(t) for t in texts]

    def close(self) -> None:
        self.closed = True


def make_chunk(source_id: str, chunk_index: int, embedding, content: Optional[str] = None, metadata=None) -> Chunk:
    return Chunk(
        source_id=source_id,
        chunk_index=chunk_index,
        content=content or f"{source_id} chunk {chunk_index}",
        embedding=list(embedding),
        metadata=metadata,
    )


@pytest.fixture
def chunk_factory():
    return make_chunk


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def backend_manager(fake_backend):
    manager = BackendManager(factory=lambda: fake_backend, idle_timeout=0)
    yield manager
    manager.unload()


@pytest.fixture
def store(tmp_path):
    s = SQLiteChunkStore(db_path=tmp_path / "vectors.db", accelerated=True)
    yield s
    s.close()
    # Release the connection so tmp_path can be removed on Windows
    gc.collect()


@pytest.fixture
def scan_store(tmp_path):
    s = SQLiteChunkStore(db_path=tmp_path / "vectors_scan.db", accelerated=False)
    yield s
    s.close()
    gc.collect()


@pytest.fixture
def snapshot_store(tmp_path):
    return SnapshotStore(tmp_path / "snapshot.json")


@pytest.fixture
def pipeline(store, backend_manager, snapshot_store):
    p = IndexingPipeline(store, backend_manager, snapshot_store=snapshot_store, batch_size=4)
    yield p
    p.shutdown()


@pytest.fixture
def config_override():
    """Set dotted config keys for one test and restore them afterwards."""
    saved = {}

    def _set(key, value):
        if key not in saved:
            saved[key] = config.get(key)
        config.set(key, value)

    yield _set
    for key, value in saved.items():
        config.set(key, value)
