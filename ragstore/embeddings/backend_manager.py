"""
Embedding backend lifecycle with lazy loading and automatic unloading.

Keeps peak memory bounded when indexing is infrequent:
- The backend is created only when first needed
- Callers that load it can unload it again once they are done
- An optional idle timer unloads it after a period without use
- Leases keep it resident while an indexing run is using it
"""

import gc
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Tuple

from ragstore.config import config
from ragstore.embeddings.backend import EmbeddingBackend
from ragstore.utils.exceptions import ModelLoadError, RagStoreError
from ragstore.utils.logger import logger

BackendFactory = Callable[[], EmbeddingBackend]


def _sentence_transformer_factory() -> EmbeddingBackend:
    # Imported here so torch is only loaded when a real model is requested
    from ragstore.embeddings.sentence_transformer_backend import SentenceTransformerBackend

    return SentenceTransformerBackend()


class BackendManager:
    """Owns at most one embedding backend and loads/unloads it on demand.

    Thread-safe: all state changes happen under a reentrant lock.
    """

    def __init__(self, factory: Optional[BackendFactory] = None, idle_timeout: Optional[float] = None):
        """
        Args:
            factory: Callable creating a backend (defaults to SentenceTransformerBackend)
            idle_timeout: Seconds to keep an unused backend (0 disables auto-unload)
        """
        self._factory = factory or _sentence_transformer_factory
        self.idle_timeout = (
            idle_timeout if idle_timeout is not None else config.get("embedding.idle_timeout", 300)
        )

        self._backend: Optional[EmbeddingBackend] = None
        self._lock = threading.RLock()
        self._last_access_time: float = 0
        self._unload_timer: Optional[threading.Timer] = None
        self._leases = 0
        self._load_count = 0

    def is_loaded(self) -> bool:
        with self._lock:
            return self._backend is not None

    def current(self) -> Optional[EmbeddingBackend]:
        """Return the resident backend without loading one."""
        with self._lock:
            if self._backend is not None:
                self._touch()
            return self._backend

    def get_backend(self) -> EmbeddingBackend:
        return self.ensure_loaded()[0]

    def ensure_loaded(self) -> Tuple[EmbeddingBackend, bool]:
        """Return the backend and whether this call had to load it."""
        with self._lock:
            created = False
            if self._backend is None:
                self._load()
                created = True
            self._touch()
            return self._backend, created

    @contextmanager
    def lease(self) -> Iterator[EmbeddingBackend]:
        """Hold the backend resident (no idle unload) for the duration of the block."""
        with self._lock:
            backend = self.get_backend()
            self._leases += 1
        try:
            yield backend
        finally:
            with self._lock:
                self._leases -= 1
                self._touch()

    def unload(self) -> None:
        """Immediately unload the backend, ignoring the idle timeout."""
        with self._lock:
            self._cancel_unload_timer()
            if self._backend is not None:
                logger.info("Unloading embedding backend")
                self._unload()

    @contextmanager
    def session(self) -> Iterator[Tuple[EmbeddingBackend, bool]]:
        """Lease the backend, loading it if needed; yields ``(backend, created)``.

        Loading and leasing happen in one critical section. A session that
        loaded the backend unloads it on exit unless other leases remain.
        """
        with self._lock:
            created = self._backend is None
            if created:
                self._load()
            backend = self._backend
            self._leases += 1
            self._touch()
        try:
            yield backend, created
        finally:
            with self._lock:
                self._leases -= 1
                if created and self._leases == 0 and self._backend is backend:
                    self._cancel_unload_timer()
                    logger.info("Unloading embedding backend loaded for this session")
                    self._unload()
                else:
                    self._touch()

    def _load(self) -> None:
        """Create the backend (assumes lock held)."""
        start_time = time.time()
        try:
            self._backend = self._factory()
        except RagStoreError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to create embedding backend: {e}") from e
        self._load_count += 1
        logger.info(f"Embedding backend loaded in {time.time() - start_time:.2f}s")

    def _unload(self) -> None:
        backend = self._backend
        self._backend = None
        close = getattr(backend, "close", None)
        if callable(close):
            close()
        del backend
        # Force garbage collection so model weights are released right away
        gc.collect()

    def _touch(self) -> None:
        self._last_access_time = time.time()
        self._schedule_unload()

    def _schedule_unload(self) -> None:
        """Schedule unload after the idle timeout (assumes lock held)."""
        self._cancel_unload_timer()
        if not self.idle_timeout or self.idle_timeout <= 0:
            return

        self._unload_timer = threading.Timer(self.idle_timeout, self._unload_if_idle)
        self._unload_timer.daemon = True
        self._unload_timer.start()

    def _cancel_unload_timer(self) -> None:
        if self._unload_timer is not None:
            self._unload_timer.cancel()
            self._unload_timer = None

    def _unload_if_idle(self) -> None:
        """Unload the backend if still idle (called by the timer thread)."""
        with self._lock:
            if self._leases > 0 or self._backend is None:
                return
            idle_for = time.time() - self._last_access_time
            if idle_for >= self.idle_timeout:
                logger.info(f"Unloading embedding backend after {idle_for:.1f}s idle")
                self._unload()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "loaded": self._backend is not None,
                "idle_timeout": self.idle_timeout,
                "active_leases": self._leases,
                "load_count": self._load_count,
                "time_since_last_access": (
                    time.time() - self._last_access_time if self._last_access_time > 0 else 0
                ),
            }
