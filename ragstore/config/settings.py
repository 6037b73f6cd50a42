"""
Configuration management using Pydantic.
Provides validation and type safety for store, indexing and logging settings.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """On-disk vector store configuration."""

    db_path: Path = Field(default=Path("./data/rag_vectors.db"), description="SQLite database file")
    accelerated_search: bool = Field(
        default=True, description="Use the cached normalized-matrix search path"
    )
    busy_timeout: float = Field(default=30.0, ge=0, description="SQLite busy timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="RAGSTORE_STORE_")


class ChunkingSettings(BaseSettings):
    """Chunking strategy configuration."""

    text_chunk_size: int = Field(default=1000, ge=1, description="Max characters per text chunk")
    text_chunk_overlap: int = Field(default=200, ge=0, description="Characters shared by neighbours")
    code_max_lines: int = Field(default=80, ge=1, description="Max lines per code chunk")
    code_line_overlap: int = Field(default=10, ge=0, description="Lines shared by code chunks")
    max_file_size_bytes: int = Field(
        default=10_000_000, ge=1, description="Reject documents larger than this"
    )

    model_config = SettingsConfigDict(env_prefix="RAGSTORE_CHUNKING_")


class EmbeddingSettings(BaseSettings):
    """Embedding backend configuration."""

    model_name: str = Field(default="BAAI/bge-small-en-v1.5", description="sentence-transformers model")
    device: Optional[str] = Field(default=None, description="'cuda' or 'cpu'; auto-detected if unset")
    batch_size: int = Field(default=32, ge=1, description="Texts per embed call")
    idle_timeout: int = Field(
        default=300, description="Seconds before an idle backend is unloaded (0 disables)"
    )

    model_config = SettingsConfigDict(env_prefix="RAGSTORE_EMBEDDING_")


class IndexingSettings(BaseSettings):
    """Re-indexing pipeline configuration."""

    auto_indexing_enabled: bool = Field(
        default=True, description="Allow reindex_if_needed to re-index changed corpora"
    )
    snapshot_path: Path = Field(
        default=Path("./data/knowledge_snapshot.json"), description="Persisted corpus fingerprint"
    )
    max_workers: int = Field(default=1, ge=1, description="Background indexing workers")

    model_config = SettingsConfigDict(env_prefix="RAGSTORE_INDEXING_")


class RetrievalSettings(BaseSettings):
    """Query path configuration."""

    default_top_k: int = Field(default=6, description="Default number of chunks to retrieve")
    load_backend_on_query: bool = Field(
        default=False, description="Load the embedding backend for queries when it is not resident"
    )
    include_scores: bool = Field(default=False, description="Show scores in context blocks")

    model_config = SettingsConfigDict(env_prefix="RAGSTORE_RETRIEVAL_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO")
    format: str = Field(default="json", description="'json' or 'text'")
    log_file: Optional[str] = Field(default=None, description="Write logs here instead of stderr")
    rotate_size: int = Field(default=100 * 1024 * 1024, description="Rotate log file at this size")
    backup_count: int = Field(default=10)
    enable_queue: bool = Field(default=False, description="Hand records to a background listener")

    model_config = SettingsConfigDict(env_prefix="RAGSTORE_LOGGING_")


class Settings(BaseSettings):
    """Main application settings."""

    store: StoreSettings = Field(default_factory=StoreSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_nested_delimiter="__", extra="ignore"
    )


# Global settings instance
settings = Settings()
