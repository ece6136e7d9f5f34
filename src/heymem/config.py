"""heymem configuration."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field


def _default_data_dir() -> Path:
    return Path(os.environ.get("HEYMEM_DATA_DIR", Path.home() / ".config" / "heymem"))


def _default_docs_cache_dir() -> Path | None:
    raw = os.environ.get("HEYMEM_DOCS_CACHE_DIR", "")
    return Path(raw) if raw else None


class EmbeddingConfig(BaseModel):
    provider: str = Field(default_factory=lambda: os.environ.get("HEYMEM_EMBED_PROVIDER", "gemini"))
    api_key: str = ""
    model: str = ""
    dims: int = 768
    base_url: str = ""
    timeout: float = 30.0
    cache_embeddings: bool = True


class RetrievalConfig(BaseModel):
    default_top_k: int = 5
    candidate_multiplier: int = 2
    agreement_boost: float = 0.2


class DocsCacheConfig(BaseModel):
    max_bytes: int = 100 * 1024 * 1024
    max_key_length: int = 200
    key_prefix_length: int = 50
    fetch_timeout: float = 5.0


class Config(BaseModel):
    data_dir: Path = Field(default_factory=_default_data_dir)
    docs_cache_path: Path | None = Field(default_factory=_default_docs_cache_dir)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    docs_cache: DocsCacheConfig = Field(default_factory=DocsCacheConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "session.db"

    @property
    def faiss_dir(self) -> Path:
        return self.data_dir / "faiss"

    @property
    def docs_cache_dir(self) -> Path:
        if self.docs_cache_path is not None:
            return self.docs_cache_path
        return self.data_dir / "docs"

    def ensure_dirs(self) -> None:
        for d in [self.data_dir, self.faiss_dir, self.docs_cache_dir]:
            d.mkdir(parents=True, exist_ok=True)
