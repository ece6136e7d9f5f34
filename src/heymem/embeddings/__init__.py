"""Embedding providers and abstractions."""

from heymem.embeddings.backends import (
    EmbeddingBackend,
    GeminiEmbedder,
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    create_embedder,
)
from heymem.embeddings.cache import EmbeddingCache

__all__ = [
    "EmbeddingBackend",
    "EmbeddingCache",
    "GeminiEmbedder",
    "OpenAIEmbedder",
    "OllamaEmbedder",
    "HashEmbedder",
    "SentenceTransformerEmbedder",
    "create_embedder",
]
