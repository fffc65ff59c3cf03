"""
vaultseek Configuration

Configuration is loaded from:
1. Environment variables (prefixed with VAULTSEEK_)
2. ~/.vaultseek/.env file

Key settings:
- VAULTSEEK_VAULT_PATH: Root folder of the Markdown vault
- VAULTSEEK_OPENROUTER_API_KEY: Enables model-backed query expansion and embeddings
- VAULTSEEK_ENABLE_SEMANTIC: Turn the semantic stage of the retriever on
- VAULTSEEK_INCLUSIONS / VAULTSEEK_EXCLUSIONS: Comma separated path patterns
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """vaultseek configuration settings."""

    app_name: str = "vaultseek"

    # Vault and index location
    vault_path: Path = Field(default_factory=Path.cwd)
    index_dir: Optional[Path] = None
    index_base_name: str = "vaultseek-index"
    max_partition_size_mb: float = Field(default=150, gt=0)

    # Model providers
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    chat_model: str = "x-ai/grok-4.1-fast"
    embedding_model: str = "qwen/qwen3-embedding-8b"
    llm_timeout_seconds: float = Field(default=5.0, gt=0)

    # Query expansion
    expansion_max_variants: int = Field(default=2, ge=0)
    expansion_cache_size: int = Field(default=100, ge=1)

    # Path patterns (comma separated, URL-encoded)
    inclusions: str = ""
    exclusions: str = ""
    internal_folders: List[str] = Field(default_factory=lambda: [".vaultseek", ".trash"])

    # Retrieval
    co_citation_threshold: int = Field(default=20, ge=0)
    daily_note_max_days: int = Field(default=365, ge=1)
    max_results: int = Field(default=30, ge=1, le=100)
    candidate_limit: int = Field(default=500, ge=10, le=1000)
    graph_hops: int = Field(default=1, ge=0, le=3)
    rrf_k: int = Field(default=60, ge=1)
    semantic_weight: float = Field(default=2.0, ge=0)
    enable_semantic: bool = False
    enable_lexical_boosts: bool = True

    # Chunk index
    chunk_size: int = Field(default=6000, ge=200)
    embedding_batch_size: int = Field(default=16, ge=1)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="VAULTSEEK_",
        env_file=Path.home() / ".vaultseek" / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("vault_path", "index_dir", mode="before")
    @classmethod
    def _expand_path(cls, value):
        if value is None or value == "":
            return None
        return Path(value).expanduser()

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    def get_index_dir(self) -> Path:
        """Directory holding the partitioned chunk index."""
        if self.index_dir is not None:
            return self.index_dir
        return self.vault_path / ".vaultseek"

    @property
    def max_partition_bytes(self) -> int:
        return int(self.max_partition_size_mb * 1024 * 1024)

    @property
    def is_model_configured(self) -> bool:
        """Check if an OpenRouter key is available for chat and embeddings."""
        return bool(self.openrouter_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings."""
    return Settings()


def reload_settings() -> Settings:
    """Clear cached settings (useful for tests) and reload."""
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Settings", "get_settings", "reload_settings"]
