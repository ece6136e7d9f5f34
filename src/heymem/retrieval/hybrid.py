"""Hybrid retrieval: min-max normalized fusion of keyword + vector search."""

from __future__ import annotations

import asyncio
import logging

import numpy as np

from heymem.config import RetrievalConfig
from heymem.retrieval.keyword import KeywordSearch
from heymem.retrieval.vector import VectorSearch
from heymem.types import Entry, SearchOrigin, SearchResult

logger = logging.getLogger(__name__)


def normalize_keyword_scores(scores: list[float]) -> list[float]:
    """Map bm25 values (more negative is better) onto [0, 1].

    Each score's gap from the best candidate, max_abs - |s|, is treated like a
    distance and normalized as 1 - gap / max_abs, so the best match gets 1 and
    keyword order is preserved. When every score is zero (substring fallback)
    there is nothing to rank by, so each candidate gets 1.
    """
    if not scores:
        return []
    max_abs = max(abs(s) for s in scores)
    if max_abs == 0:
        return [1.0] * len(scores)
    return [1.0 - (max_abs - abs(s)) / max_abs for s in scores]


def normalize_distances(distances: list[float]) -> list[float]:
    """Map distances (smaller is better) onto [0, 1] as 1 - d / max_d."""
    if not distances:
        return []
    max_dist = max(distances)
    if max_dist <= 0:
        return [1.0] * len(distances)
    return [1.0 - d / max_dist for d in distances]


class HybridSearch:
    """Combines FTS5 keyword and FAISS vector search into one ranked list."""

    def __init__(
        self,
        keyword: KeywordSearch,
        vector: VectorSearch,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.keyword = keyword
        self.vector = vector
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        query_vector: np.ndarray | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Run hybrid search.

        If query_vector is None, only keyword candidates contribute.
        """
        limit = self.config.default_top_k if limit is None else limit
        if limit <= 0:
            return []
        fetch_k = limit * max(1, self.config.candidate_multiplier)

        kw_results, vec_hits = await asyncio.gather(
            asyncio.to_thread(self.keyword.search, query, fetch_k),
            self._vector_candidates(query_vector, fetch_k),
        )
        return self._merge(kw_results, vec_hits, limit=limit)

    async def _vector_candidates(
        self, query_vector: np.ndarray | None, fetch_k: int
    ) -> list[tuple[int, float]]:
        if query_vector is None:
            return []
        try:
            return await asyncio.to_thread(self.vector.search, query_vector, fetch_k)
        except Exception as exc:
            logger.warning("vector search failed, using keyword results only: %s", exc)
            return []

    def _merge(
        self,
        kw_results: list[SearchResult],
        vec_hits: list[tuple[int, float]],
        limit: int,
    ) -> list[SearchResult]:
        kw_norm = normalize_keyword_scores([r.score for r in kw_results])
        vec_norm = normalize_distances([d for _, d in vec_hits])

        # First occurrence wins; each list is already best-first.
        kw_scores: dict[int, float] = {}
        entries: dict[int, Entry] = {}
        for r, score in zip(kw_results, kw_norm):
            if r.entry.id not in kw_scores:
                kw_scores[r.entry.id] = score
                entries[r.entry.id] = r.entry
        vec_scores: dict[int, float] = {}
        for (entry_id, _), score in zip(vec_hits, vec_norm):
            vec_scores.setdefault(entry_id, score)

        missing = [eid for eid in vec_scores if eid not in entries]
        if missing:
            entries.update(self.keyword.store.get_entries(missing))

        boost = self.config.agreement_boost
        merged: list[SearchResult] = []
        for entry_id in kw_scores.keys() | vec_scores.keys():
            entry = entries.get(entry_id)
            if entry is None:
                continue
            if entry_id in kw_scores and entry_id in vec_scores:
                score = min(1.0, (kw_scores[entry_id] + vec_scores[entry_id]) / 2 + boost)
                origin = SearchOrigin.BOTH
            elif entry_id in kw_scores:
                score = kw_scores[entry_id]
                origin = SearchOrigin.KEYWORD
            else:
                score = vec_scores[entry_id]
                origin = SearchOrigin.VECTOR
            merged.append(SearchResult(entry=entry, score=max(0.0, score), origin=origin))

        merged.sort(key=lambda r: (-r.score, -r.entry.id))
        return merged[:limit]
