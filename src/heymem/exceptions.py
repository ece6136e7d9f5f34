"""heymem exception hierarchy."""

from __future__ import annotations


class HeymemError(Exception):
    """Base class for all heymem errors."""


class StorageError(HeymemError):
    """The entry store or vector index could not complete a write or read."""


class EmbeddingError(HeymemError):
    """An embedding provider failed or returned a malformed vector."""
