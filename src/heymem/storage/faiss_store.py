"""FAISS vector index wrapper."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import faiss
import numpy as np

from heymem.exceptions import StorageError

logger = logging.getLogger(__name__)

INDEX_FILENAME = "vectors.index"


class FAISSStore:
    """Flat inner-product index over L2-normalized vectors.

    Row ids are FAISS positions and belong to this store alone; callers bridge
    them to entry ids through the mapping table. Distances are cosine
    distances (1 - cosine similarity), so 0 is identical and 2 is opposite.
    Reads and writes are serialized by a lock: searches run in worker threads
    while new vectors are added from the event loop.
    """

    def __init__(self, dims: int = 768, faiss_dir: Path | str | None = None) -> None:
        if dims <= 0:
            raise StorageError(f"invalid vector dimension: {dims}")
        self.dims = dims
        self.faiss_dir = Path(faiss_dir) if faiss_dir else None
        self._index: faiss.Index = faiss.IndexFlatIP(dims)
        self._lock = threading.Lock()
        if self.faiss_dir:
            self.faiss_dir.mkdir(parents=True, exist_ok=True)
            self._try_load()

    @property
    def size(self) -> int:
        with self._lock:
            return self._index.ntotal

    def _prepare(self, vector: np.ndarray) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if vec.shape[1] != self.dims:
            raise StorageError(f"vector has {vec.shape[1]} dims, index expects {self.dims}")
        if not np.all(np.isfinite(vec)):
            raise StorageError("vector contains non-finite values")
        vec = np.ascontiguousarray(vec)
        faiss.normalize_L2(vec)
        return vec

    def add(self, vector: np.ndarray) -> int:
        """Add one vector. Returns its row id."""
        vec = self._prepare(vector)
        with self._lock:
            row_id = self._index.ntotal
            self._index.add(vec)
        return row_id

    def search(self, query_vector: np.ndarray, top_k: int = 20) -> list[tuple[int, float]]:
        """Nearest neighbours as [(row_id, distance), ...], closest first."""
        if top_k <= 0:
            return []
        vec = self._prepare(query_vector)
        with self._lock:
            if self._index.ntotal == 0:
                return []
            k = min(top_k, self._index.ntotal)
            sims, indices = self._index.search(vec, k)
        results = []
        for sim, idx in zip(sims[0], indices[0]):
            if idx < 0:
                continue
            distance = min(2.0, max(0.0, 1.0 - float(sim)))
            results.append((int(idx), distance))
        return results

    def save(self) -> None:
        """Persist the index to disk."""
        if not self.faiss_dir:
            raise StorageError("No faiss_dir configured")
        tmp = self.faiss_dir / (INDEX_FILENAME + ".tmp")
        with self._lock:
            faiss.write_index(self._index, str(tmp))
            tmp.replace(self.faiss_dir / INDEX_FILENAME)

    def _try_load(self) -> None:
        index_path = self.faiss_dir / INDEX_FILENAME
        if not index_path.exists():
            return
        index = faiss.read_index(str(index_path))
        if index.d != self.dims:
            raise StorageError(
                f"{index_path} holds {index.d}-dim vectors but {self.dims} are configured"
            )
        self._index = index
        logger.debug("loaded %d vectors from %s", index.ntotal, index_path)
