from __future__ import annotations

import numpy as np
import pytest

from heymem.exceptions import StorageError
from heymem.retrieval.vector import VectorSearch
from heymem.storage.faiss_store import FAISSStore
from heymem.storage.sqlite_store import SQLiteStore


def _v(*xs: float) -> np.ndarray:
    return np.array(xs, dtype=np.float32)


def test_empty_index_search_returns_empty():
    store = FAISSStore(dims=4)
    assert store.size == 0
    assert store.search(_v(1, 0, 0, 0), top_k=5) == []


def test_add_assigns_row_ids_and_search_is_closest_first():
    store = FAISSStore(dims=4)
    assert store.add(_v(1, 0, 0, 0)) == 0
    assert store.add(_v(0, 1, 0, 0)) == 1
    assert store.add(_v(1, 1, 0, 0)) == 2

    hits = store.search(_v(0, 2, 0, 0), top_k=3)
    assert hits[0][0] == 1
    assert hits[0][1] == pytest.approx(0.0, abs=1e-5)
    distances = [d for _, d in hits]
    assert distances == sorted(distances)
    assert all(0.0 <= d <= 2.0 for d in distances)


def test_search_caps_k_at_index_size():
    store = FAISSStore(dims=4)
    store.add(_v(1, 0, 0, 0))
    assert len(store.search(_v(1, 0, 0, 0), top_k=10)) == 1
    assert store.search(_v(1, 0, 0, 0), top_k=0) == []


def test_wrong_dimension_is_rejected():
    store = FAISSStore(dims=4)
    with pytest.raises(StorageError):
        store.add(_v(1, 0, 0))
    with pytest.raises(StorageError):
        store.add(_v(np.nan, 0, 0, 0))
    assert store.size == 0


def test_index_persists_and_checks_dims(tmp_path):
    store = FAISSStore(dims=4, faiss_dir=tmp_path)
    store.add(_v(1, 0, 0, 0))
    store.add(_v(0, 1, 0, 0))
    store.save()

    reloaded = FAISSStore(dims=4, faiss_dir=tmp_path)
    assert reloaded.size == 2
    assert reloaded.search(_v(0, 1, 0, 0), top_k=1)[0][0] == 1

    with pytest.raises(StorageError):
        FAISSStore(dims=8, faiss_dir=tmp_path)


def test_save_without_directory_fails():
    with pytest.raises(StorageError):
        FAISSStore(dims=4).save()


def test_vector_search_resolves_entry_ids_through_mapping(tmp_path):
    sqlite = SQLiteStore(tmp_path / "s.db")
    try:
        # Entry ids start at 1 and skip ahead; vector rows start at 0.
        for i in range(3):
            sqlite.append_entry(f"filler {i}", "x", "/x")
        target = sqlite.append_entry("target", "x", "/x")
        other = sqlite.append_entry("other", "x", "/x")

        vs = VectorSearch(FAISSStore(dims=4), sqlite)
        assert vs.index_entry(target, _v(1, 0, 0, 0)) == 0
        assert vs.index_entry(other, _v(0, 1, 0, 0)) == 1

        hits = vs.search(_v(1, 0.1, 0, 0), limit=5)
        assert [eid for eid, _ in hits] == [target, other]
        assert hits[0][1] < hits[1][1]
    finally:
        sqlite.close()


def test_vector_search_skips_unmapped_rows(tmp_path):
    sqlite = SQLiteStore(tmp_path / "s.db")
    try:
        eid = sqlite.append_entry("mapped", "x", "/x")
        faiss_store = FAISSStore(dims=4)
        faiss_store.add(_v(1, 0, 0, 0))  # orphan row 0
        vs = VectorSearch(faiss_store, sqlite)
        vs.index_entry(eid, _v(0.9, 0.1, 0, 0))
        assert [e for e, _ in vs.search(_v(1, 0, 0, 0), limit=5)] == [eid]
    finally:
        sqlite.close()


def test_stale_mappings_are_pruned_on_startup(tmp_path):
    sqlite = SQLiteStore(tmp_path / "s.db")
    try:
        a = sqlite.append_entry("a", "x", "/x")
        b = sqlite.append_entry("b", "x", "/x")
        sqlite.insert_vector_mapping(a, 0)
        sqlite.insert_vector_mapping(b, 1)

        # The index lost its second row (e.g. it was saved before the crash).
        faiss_store = FAISSStore(dims=4)
        faiss_store.add(_v(1, 0, 0, 0))
        VectorSearch(faiss_store, sqlite)

        assert sqlite.count_vector_mappings() == 1
        assert not sqlite.has_vector_mapping(b)
    finally:
        sqlite.close()
