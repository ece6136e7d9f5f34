"""SQLite-backed embedding cache keyed by text hash and model."""

from __future__ import annotations

import numpy as np

from heymem.storage.sqlite_store import SQLiteStore
from heymem.utils import blob_to_vector, text_hash, vector_to_blob


class EmbeddingCache:
    def __init__(self, store: SQLiteStore, model: str, dims: int) -> None:
        self.store = store
        self.model = model
        self.dims = dims

    def get(self, text: str) -> np.ndarray | None:
        blob = self.store.get_cached_embedding(text_hash(text), self.model)
        if blob is None:
            return None
        vec = blob_to_vector(blob)
        # A cached vector from a differently sized model is useless here.
        if vec.shape[0] != self.dims:
            return None
        return vec

    def put(self, text: str, vector: np.ndarray) -> None:
        self.store.cache_embedding(text_hash(text), vector_to_blob(vector), self.model)
