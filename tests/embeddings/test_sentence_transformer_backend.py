from unittest.mock import MagicMock, patch

import numpy as np
import pytest

pytest.importorskip("torch")
pytest.importorskip("sentence_transformers")

from ragstore.embeddings.backend import EmbeddingBackend  # noqa: E402
from ragstore.embeddings.sentence_transformer_backend import SentenceTransformerBackend  # noqa: E402
from ragstore.utils.exceptions import EmbeddingError, ModelLoadError  # noqa: E402

MODULE = "ragstore.embeddings.sentence_transformer_backend"


@pytest.fixture
def mock_model():
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = 3
    model.encode.side_effect = lambda texts, **kwargs: np.ones((len(texts), 3), dtype=np.float64)
    return model


@patch(f"{MODULE}.SentenceTransformer")
def test_embed_returns_float_lists(mock_st, mock_model):
    mock_st.return_value = mock_model
    backend = SentenceTransformerBackend(model_name="test-model", device="cpu", batch_size=2)

    vectors = backend.embed(["a", "b", "c"])

    assert vectors == [[1.0, 1.0, 1.0]] * 3
    assert backend.embedding_dimension == 3
    assert isinstance(backend, EmbeddingBackend)
    mock_st.assert_called_once_with("test-model", device="cpu")
    assert mock_model.encode.call_args.kwargs["batch_size"] == 2


@patch(f"{MODULE}.SentenceTransformer")
def test_empty_input(mock_st, mock_model):
    mock_st.return_value = mock_model
    backend = SentenceTransformerBackend(model_name="test-model", device="cpu")
    assert backend.embed([]) == []
    mock_model.encode.assert_not_called()


@patch(f"{MODULE}.SentenceTransformer")
def test_encode_failure_wrapped(mock_st, mock_model):
    mock_model.encode.side_effect = RuntimeError("out of memory")
    mock_st.return_value = mock_model
    backend = SentenceTransformerBackend(model_name="test-model", device="cpu")

    with pytest.raises(EmbeddingError, match="out of memory"):
        backend.embed(["x"])


@patch(f"{MODULE}.SentenceTransformer")
def test_gpu_failure_falls_back_to_cpu(mock_st, mock_model):
    mock_st.side_effect = [RuntimeError("CUDA error"), mock_model]
    backend = SentenceTransformerBackend(model_name="test-model", device="cuda")

    assert backend.device == "cpu"
    assert mock_st.call_count == 2


@patch(f"{MODULE}.SentenceTransformer")
def test_cpu_failure_raises_model_load_error(mock_st):
    mock_st.side_effect = OSError("model not found")
    with pytest.raises(ModelLoadError):
        SentenceTransformerBackend(model_name="missing-model", device="cpu")


@patch(f"{MODULE}.torch.cuda.is_available", return_value=False)
@patch(f"{MODULE}.SentenceTransformer")
def test_device_autodetect_cpu(mock_st, _cuda, mock_model):
    mock_st.return_value = mock_model
    backend = SentenceTransformerBackend(model_name="test-model")
    assert backend.device == "cpu"
