"""heymem — local interaction memory with hybrid recall and a docs cache."""

__version__ = "0.1.0"

from heymem.config import Config
from heymem.docs.cache import DocsCache
from heymem.memory.session import SessionMemory
from heymem.types import DocSource, Entry, SearchOrigin, SearchResult

__all__ = [
    "__version__",
    "Config",
    "DocsCache",
    "DocSource",
    "Entry",
    "SearchOrigin",
    "SearchResult",
    "SessionMemory",
]
