"""FAISS vector search."""

from __future__ import annotations

import logging

import numpy as np

from heymem.storage.faiss_store import FAISSStore
from heymem.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class VectorSearch:
    """Vector similarity search, bridged to entry ids by the mapping table."""

    def __init__(self, faiss_store: FAISSStore, sqlite_store: SQLiteStore) -> None:
        self.faiss = faiss_store
        self.sqlite = sqlite_store
        pruned = self.sqlite.prune_vector_mappings(self.faiss.size)
        if pruned:
            logger.warning(
                "dropped %d vector mappings past the end of the index (%d rows)",
                pruned, self.faiss.size,
            )

    def nearest(self, query_vector: np.ndarray, limit: int = 20) -> list[tuple[int, float]]:
        """Raw FAISS hits as [(vector_row_id, distance), ...]."""
        return self.faiss.search(query_vector, top_k=limit)

    def resolve(self, hits: list[tuple[int, float]]) -> list[tuple[int, float]]:
        """Translate row ids to entry ids, dropping rows with no mapping."""
        if not hits:
            return []
        mapping = self.sqlite.get_entry_ids_for_vector_rows(row for row, _ in hits)
        return [(mapping[row], dist) for row, dist in hits if row in mapping]

    def search(self, query_vector: np.ndarray, limit: int = 20) -> list[tuple[int, float]]:
        """Nearest entries as [(entry_id, distance), ...], closest first."""
        return self.resolve(self.nearest(query_vector, limit=limit))

    def index_entry(self, entry_id: int, vector: np.ndarray) -> int:
        """Add an entry's vector, then record the entry -> row mapping."""
        row_id = self.faiss.add(vector)
        self.sqlite.insert_vector_mapping(entry_id, row_id)
        return row_id
