"""FTS5/BM25 keyword search."""

from __future__ import annotations

from heymem.storage.sqlite_store import SQLiteStore
from heymem.types import SearchResult


class KeywordSearch:
    """Keyword search over interaction entries using SQLite FTS5."""

    def __init__(self, store: SQLiteStore) -> None:
        self.store = store

    def search(self, query: str, limit: int = 20) -> list[SearchResult]:
        """Best match first. Scores are raw bm25() values (more negative is better)."""
        return self.store.search_entries_fts(query, limit=limit)
