"""Core data types."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SearchOrigin(str, Enum):
    KEYWORD = "keyword"
    VECTOR = "vector"
    BOTH = "both"


class DocSource(str, Enum):
    MAN = "man"
    TLDR = "tldr"


class Entry(BaseModel):
    """One prompt/response interaction. Never updated after insert."""

    id: int
    prompt: str
    response: str
    timestamp: int  # ms since epoch
    cwd: str = ""


class SearchResult(BaseModel):
    """A ranked hit.

    Fused results carry a score in [0, 1]. Raw keyword results carry the
    FTS5 bm25() value (<= 0, more negative is better), or 0 for substring
    fallback matches.
    """

    entry: Entry
    score: float
    origin: SearchOrigin = SearchOrigin.KEYWORD


class CacheRecord(BaseModel):
    key: str
    content: str
    source: DocSource
    size_bytes: int = Field(default=0, ge=0)
    last_access: float = 0.0  # seconds since epoch (file mtime)
