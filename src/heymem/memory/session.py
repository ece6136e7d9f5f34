"""SessionMemory: the interaction log, its indexes and the docs cache, wired together."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import numpy as np

from heymem.config import Config
from heymem.docs.cache import DocsCache
from heymem.embeddings.backends import EmbeddingBackend, create_embedder
from heymem.embeddings.cache import EmbeddingCache
from heymem.retrieval.hybrid import HybridSearch
from heymem.retrieval.keyword import KeywordSearch
from heymem.retrieval.vector import VectorSearch
from heymem.storage.faiss_store import FAISSStore
from heymem.storage.sqlite_store import SQLiteStore
from heymem.types import Entry, SearchResult

logger = logging.getLogger(__name__)


class SessionMemory:
    """Persisted prompt/response history with hybrid recall.

    Build one per process and pass it to whatever needs it. Appends are durable
    and keyword-searchable as soon as append() returns; the embedding is
    computed afterwards and a failure there only costs semantic recall for
    that entry.
    """

    def __init__(self, config: Config | None = None,
                 embedder: EmbeddingBackend | None = None) -> None:
        self.config = config or Config()
        self.config.ensure_dirs()

        self.embedder = embedder or create_embedder(self.config.embedding)
        self.sqlite = SQLiteStore(self.config.db_path)
        self.faiss = FAISSStore(dims=self.embedder.dims, faiss_dir=self.config.faiss_dir)
        self.embed_cache = EmbeddingCache(self.sqlite, self.embedder.model, self.embedder.dims)

        self.keyword = KeywordSearch(self.sqlite)
        self.vector = VectorSearch(self.faiss, self.sqlite)
        self.hybrid = HybridSearch(self.keyword, self.vector, self.config.retrieval)
        self.docs_cache = DocsCache(self.config.docs_cache_dir, self.config.docs_cache)

        self._pending: set[asyncio.Task] = set()

    # --- Write ---

    async def append(self, prompt: str, response: str, cwd: str | None = None) -> int:
        """Store an interaction and schedule its embedding. Returns the entry id."""
        entry_id = self.append_sync(prompt, response, cwd)
        task = asyncio.get_running_loop().create_task(
            self._embed_and_index(entry_id, f"{prompt}\n{response}")
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return entry_id

    def append_sync(self, prompt: str, response: str, cwd: str | None = None) -> int:
        """Store an interaction for keyword search only (no embedding)."""
        return self.sqlite.append_entry(prompt, response, cwd if cwd is not None else os.getcwd())

    async def drain(self) -> None:
        """Wait for scheduled embeddings to finish."""
        while self._pending:
            batch = list(self._pending)
            await asyncio.gather(*batch)
            self._pending.difference_update(batch)

    # --- Read ---

    def recent(self, limit: int = 10) -> list[Entry]:
        return self.sqlite.recent_entries(limit)

    def search_keyword(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Keyword-only search (synchronous, no embedding needed). Raw bm25 scores."""
        return self.keyword.search(query, limit=limit or self.config.retrieval.default_top_k)

    async def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Hybrid search; degrades to keyword-only when the query cannot be embedded."""
        query_vec = None
        if self.faiss.size > 0 and query.strip():
            try:
                query_vec = await self._embed_text(query)
            except Exception as exc:
                logger.warning("query embedding failed, using keyword search only: %s", exc)
        return await self.hybrid.search(query, query_vec, limit)

    def status(self) -> dict[str, Any]:
        return {
            "entries": self.sqlite.count_entries(),
            "vectors": self.faiss.size,
            "mapped_vectors": self.sqlite.count_vector_mappings(),
            "embedding_model": self.embedder.model,
            "docs_cache": self.docs_cache.stats(),
        }

    # --- Internals ---

    async def _embed_text(self, text: str) -> np.ndarray:
        use_cache = self.config.embedding.cache_embeddings
        if use_cache:
            cached = self.embed_cache.get(text)
            if cached is not None:
                return cached
        vec = await self.embedder.embed_single(text)
        if use_cache:
            self.embed_cache.put(text, vec)
        return vec

    async def _embed_and_index(self, entry_id: int, text: str) -> None:
        """Embed one entry and add it to the vector index. Never raises."""
        try:
            vec = await self._embed_text(text)
            self.vector.index_entry(entry_id, vec)
            self.faiss.save()
        except Exception as exc:
            logger.warning("embedding for entry %d skipped: %s", entry_id, exc)

    async def close(self) -> None:
        await self.drain()
        await self.docs_cache.wait_idle()
        await self.embedder.close()
        self.faiss.save()
        self.sqlite.close()
