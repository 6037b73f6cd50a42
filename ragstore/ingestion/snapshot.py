"""Corpus fingerprinting and its persisted snapshot file."""

import hashlib
import json
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from ragstore.config import config
from ragstore.ingestion.models import SourceDocument
from ragstore.utils.logger import logger


def fingerprint(documents: Iterable[SourceDocument]) -> str:
    """sha256 over ``id:updated_at`` pairs sorted by id, joined with ``|``."""
    pairs = sorted((d.source_id, d.updated_at) for d in documents)
    raw = "|".join(f"{source_id}:{updated_at}" for source_id, updated_at in pairs)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SnapshotStore:
    """Keeps the last indexed corpus fingerprint in a small JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path or config.get("indexing.snapshot_path", "./data/knowledge_snapshot.json"))
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable snapshot file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Optional[str]:
        with self._lock:
            value = self._read().get("snapshot")
        return value if isinstance(value, str) else None

    def index_built(self) -> bool:
        with self._lock:
            return bool(self._read().get("index_built", False))

    def save(self, snapshot: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"snapshot": snapshot, "index_built": True}, f)
            tmp.replace(self.path)

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
