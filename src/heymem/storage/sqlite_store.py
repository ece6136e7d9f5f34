"""SQLite entry store with FTS5 keyword index and vector mapping table."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterable

from heymem.exceptions import StorageError
from heymem.types import Entry, SearchOrigin, SearchResult
from heymem.utils import now_ms

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    prompt TEXT NOT NULL,
    response TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    cwd TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_entries_timestamp ON entries(timestamp DESC);

CREATE VIRTUAL TABLE IF NOT EXISTS entries_fts USING fts5(
    prompt, response, content=entries, content_rowid=id
);

CREATE TABLE IF NOT EXISTS entry_vectors (
    entry_id INTEGER PRIMARY KEY REFERENCES entries(id),
    vector_row_id INTEGER NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS embedding_cache (
    text_hash TEXT NOT NULL,
    model TEXT NOT NULL,
    embedding BLOB NOT NULL,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (text_hash, model)
);
"""

# Entries are append-only, so only the insert trigger is needed. It runs inside
# the INSERT statement: if the FTS write fails, the entry row is rolled back too.
_FTS_TRIGGERS = """
CREATE TRIGGER IF NOT EXISTS entries_ai AFTER INSERT ON entries BEGIN
    INSERT INTO entries_fts(rowid, prompt, response)
    VALUES (new.id, new.prompt, new.response);
END;
"""

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def _tokenize_query(query: str) -> list[str]:
    """Allow-list tokenizer: keep word tokens, drop every FTS5 operator character."""
    return _TOKEN_RE.findall(query or "")


def _build_fts_query(tokens: list[str]) -> str:
    # Quoting makes AND/OR/NOT/NEAR plain terms.
    return " ".join(f'"{t}"' for t in tokens)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteStore:
    """Append-only interaction log backed by SQLite."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False,
                                     timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=30000")
        self._init_schema()

    def _init_schema(self) -> None:
        for attempt in range(5):
            try:
                cur = self._conn.cursor()
                cur.executescript(_SCHEMA)
                cur.executescript(_FTS_TRIGGERS)
                cur.execute(
                    "INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )
                self._conn.commit()
                return
            except sqlite3.OperationalError as e:
                if "locked" in str(e) and attempt < 4:
                    time.sleep(2 * (attempt + 1))
                    continue
                raise StorageError(f"could not initialise {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- Entries ---

    def append_entry(self, prompt: str, response: str, cwd: str = "",
                     timestamp: int | None = None) -> int:
        ts = now_ms() if timestamp is None else int(timestamp)
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        "INSERT INTO entries(prompt, response, timestamp, cwd) VALUES (?, ?, ?, ?)",
                        (prompt, response, ts, cwd or ""),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"failed to append entry: {e}") from e
        return int(cur.lastrowid)

    def get_entry(self, entry_id: int) -> Entry | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM entries WHERE id=?", (entry_id,)).fetchone()
        return self._row_to_entry(row) if row else None

    def get_entries(self, entry_ids: Iterable[int]) -> dict[int, Entry]:
        ids = list(dict.fromkeys(int(i) for i in entry_ids))
        out: dict[int, Entry] = {}
        # Stay well under SQLITE_MAX_VARIABLE_NUMBER.
        for start in range(0, len(ids), 500):
            batch = ids[start:start + 500]
            placeholders = ",".join("?" * len(batch))
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT * FROM entries WHERE id IN ({placeholders})", batch,
                ).fetchall()
            for r in rows:
                out[r["id"]] = self._row_to_entry(r)
        return out

    def recent_entries(self, limit: int = 10) -> list[Entry]:
        if limit <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM entries ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def count_entries(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM entries").fetchone()
        return row[0]

    # --- Keyword index ---

    def search_entries_fts(self, query: str, limit: int = 20) -> list[SearchResult]:
        """BM25-ranked search. Scores are raw bm25() values: more negative is better.

        Never raises for query content: queries with no usable tokens, or that
        FTS5 still rejects, fall back to a literal substring match with score 0.
        """
        if limit <= 0 or not (query or "").strip():
            return []
        tokens = _tokenize_query(query)
        if not tokens:
            return self.search_entries_substring(query, limit=limit)
        try:
            with self._lock:
                rows = self._conn.execute(
                    """SELECT e.*, bm25(entries_fts) AS score
                       FROM entries_fts f
                       JOIN entries e ON e.id = f.rowid
                       WHERE entries_fts MATCH ?
                       ORDER BY score, e.id DESC
                       LIMIT ?""",
                    (_build_fts_query(tokens), limit),
                ).fetchall()
        except sqlite3.OperationalError as e:
            logger.debug("FTS query %r rejected (%s); using substring match", query, e)
            return self.search_entries_substring(query, limit=limit)
        return [
            SearchResult(entry=self._row_to_entry(r), score=float(r["score"]),
                         origin=SearchOrigin.KEYWORD)
            for r in rows
        ]

    def search_entries_substring(self, query: str, limit: int = 20) -> list[SearchResult]:
        needle = (query or "").strip()
        if limit <= 0 or not needle:
            return []
        pattern = f"%{_escape_like(needle)}%"
        with self._lock:
            rows = self._conn.execute(
                """SELECT * FROM entries
                   WHERE prompt LIKE ? ESCAPE '\\' OR response LIKE ? ESCAPE '\\'
                   ORDER BY id DESC LIMIT ?""",
                (pattern, pattern, limit),
            ).fetchall()
        return [
            SearchResult(entry=self._row_to_entry(r), score=0.0, origin=SearchOrigin.KEYWORD)
            for r in rows
        ]

    # --- Vector mapping ---

    def insert_vector_mapping(self, entry_id: int, vector_row_id: int) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO entry_vectors(entry_id, vector_row_id) VALUES (?, ?)",
                        (entry_id, vector_row_id),
                    )
            except sqlite3.Error as e:
                raise StorageError(
                    f"failed to map entry {entry_id} to vector row {vector_row_id}: {e}"
                ) from e

    def get_entry_ids_for_vector_rows(self, row_ids: Iterable[int]) -> dict[int, int]:
        """Return {vector_row_id: entry_id} for the rows that are mapped."""
        rows_in = list(dict.fromkeys(int(r) for r in row_ids))
        out: dict[int, int] = {}
        for start in range(0, len(rows_in), 500):
            batch = rows_in[start:start + 500]
            placeholders = ",".join("?" * len(batch))
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT entry_id, vector_row_id FROM entry_vectors "
                    f"WHERE vector_row_id IN ({placeholders})",
                    batch,
                ).fetchall()
            for r in rows:
                out[r["vector_row_id"]] = r["entry_id"]
        return out

    def has_vector_mapping(self, entry_id: int) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM entry_vectors WHERE entry_id=?", (entry_id,)
            ).fetchone()
        return row is not None

    def count_vector_mappings(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM entry_vectors").fetchone()
        return row[0]

    def prune_vector_mappings(self, index_size: int) -> int:
        """Drop mappings that point past the end of the vector index."""
        with self._lock:
            with self._conn:
                cur = self._conn.execute(
                    "DELETE FROM entry_vectors WHERE vector_row_id >= ?", (index_size,)
                )
        return cur.rowcount

    # --- Embedding cache ---

    def get_cached_embedding(self, text_hash: str, model: str) -> bytes | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT embedding FROM embedding_cache WHERE text_hash=? AND model=?",
                (text_hash, model),
            ).fetchone()
        return row["embedding"] if row else None

    def cache_embedding(self, text_hash: str, embedding: bytes, model: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO embedding_cache(text_hash, model, embedding, created_at) "
                "VALUES (?, ?, ?, ?)",
                (text_hash, model, embedding, now_ms()),
            )
            self._conn.commit()

    # --- Row Converters ---

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> Entry:
        return Entry(
            id=row["id"],
            prompt=row["prompt"],
            response=row["response"],
            timestamp=row["timestamp"],
            cwd=row["cwd"] or "",
        )
