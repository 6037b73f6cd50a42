"""SentenceTransformers implementation of the embedding backend."""

import time
from typing import List, Optional, Sequence

import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from ragstore.config import config
from ragstore.utils.exceptions import EmbeddingError, ModelLoadError
from ragstore.utils.logger import logger


class SentenceTransformerBackend:
    """Loads a SentenceTransformer model on construction and encodes batches of text."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        batch_size: Optional[int] = None,
    ):
        self.model_name = model_name or config.get("embedding.model_name")
        self.device = device or config.get("embedding.device") or self._detect_device()
        self.batch_size = batch_size or int(config.get("embedding.batch_size", 32))
        self._model = self._load_model()

    def _detect_device(self) -> str:
        """Detect available device (CUDA GPU or CPU)."""
        if torch.cuda.is_available():
            logger.info(f"CUDA available. Using GPU: {torch.cuda.get_device_name(0)}")
            return "cuda"
        logger.info("CUDA not available. Using CPU.")
        return "cpu"

    def _load_model(self) -> SentenceTransformer:
        start_time = time.time()
        logger.info(f"Loading embedding model {self.model_name}...")
        try:
            model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as e:
            if self.device != "cuda":
                raise ModelLoadError(f"Failed to load embedding model {self.model_name}: {e}") from e
            logger.warning(f"GPU loading failed ({e}). Falling back to CPU...")
            self.device = "cpu"
            try:
                model = SentenceTransformer(self.model_name, device=self.device)
            except Exception as cpu_error:
                raise ModelLoadError(
                    f"Failed to load embedding model {self.model_name} on CPU: {cpu_error}"
                ) from cpu_error
        logger.info(f"Model loaded in {time.time() - start_time:.2f}s on {self.device}")
        return model

    @property
    def embedding_dimension(self) -> Optional[int]:
        return self._model.get_sentence_embedding_dimension()

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vectors = self._model.encode(
                list(texts),
                batch_size=self.batch_size,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding {len(texts)} texts failed: {e}") from e
        return np.asarray(vectors, dtype=np.float32).tolist()

    def close(self) -> None:
        """Release the model and any cached GPU memory."""
        self._model = None
        if self.device == "cuda" and torch.cuda.is_available():
            torch.cuda.empty_cache()
