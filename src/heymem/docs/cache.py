"""File-backed cache for command documentation (man pages, tldr).

One file per command. Each file starts with a small header naming its source,
and its mtime serves as the last-access time. The total size is kept under a
byte budget by deleting the least recently used files.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from heymem.config import DocsCacheConfig
from heymem.types import CacheRecord, DocSource

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".txt"
_RECORD_RE = re.compile(r"\A---\nsource: (man|tldr)\n---\n(.*)\Z", re.DOTALL)


def cache_key(command: str, max_length: int = 200, prefix_length: int = 50) -> str:
    """Filesystem-safe key for a command.

    Percent-encoding is reversible, so distinct commands get distinct keys.
    Keys longer than max_length are cut to prefix_length characters and
    suffixed with a hash of the full command.
    """
    encoded = quote(command, safe="")
    if len(encoded) > max_length:
        digest = hashlib.sha256(command.encode("utf-8")).hexdigest()[:16]
        encoded = f"{encoded[:prefix_length]}_{digest}"
    return encoded


def _format_record(content: str, source: DocSource) -> str:
    return f"---\nsource: {source.value}\n---\n{content}"


@dataclass
class _FileInfo:
    path: Path
    size: int
    mtime: float


class DocsCache:
    """Size-bounded LRU cache of documentation pages.

    Eviction runs as a background task after each set. At most one pass runs at
    a time; a set that lands while a pass is in flight does not start another.
    """

    def __init__(self, cache_dir: Path | str, config: DocsCacheConfig | None = None) -> None:
        self.cache_dir = Path(cache_dir)
        self.config = config or DocsCacheConfig()
        self._eviction_in_progress = False
        self._eviction_task: asyncio.Task | None = None

    @property
    def max_bytes(self) -> int:
        return self.config.max_bytes

    def key_for(self, command: str) -> str:
        return cache_key(command, self.config.max_key_length, self.config.key_prefix_length)

    def path_for(self, command: str) -> Path:
        return self.cache_dir / f"{self.key_for(command)}{RECORD_SUFFIX}"

    # --- Public API ---

    async def get(self, command: str) -> str | None:
        record = self.get_record(command)
        return record.content if record else None

    def get_record(self, command: str) -> CacheRecord | None:
        """Read a record and mark it as recently used. Malformed records are deleted."""
        path = self.path_for(command)
        try:
            raw = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            raw = ""
        except OSError:
            return None
        match = _RECORD_RE.match(raw)
        if not match:
            logger.debug("discarding malformed docs cache record %s", path.name)
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.debug("could not remove %s: %s", path.name, exc)
            return None
        now = time.time()
        try:
            os.utime(path, (now, now))
            size = path.stat().st_size
        except OSError:
            size = len(raw.encode("utf-8"))
        return CacheRecord(
            key=self.key_for(command),
            content=match.group(2),
            source=DocSource(match.group(1)),
            size_bytes=size,
            last_access=now,
        )

    async def set(self, command: str, content: str, source: DocSource | str) -> None:
        source = DocSource(source)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(command)
        fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp-", suffix=".part")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(_format_record(content, source))
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self._schedule_eviction()

    async def enforce_budget(self) -> int:
        """Delete least recently used records until under budget.

        Returns the number of records removed; 0 if another pass is running.
        """
        if self._eviction_in_progress:
            return 0
        self._eviction_in_progress = True
        try:
            return await asyncio.to_thread(self._evict)
        finally:
            self._eviction_in_progress = False

    async def wait_idle(self) -> None:
        """Wait for the background eviction pass, if any, to finish."""
        task = self._eviction_task
        if task is not None and not task.done():
            await task

    def stats(self) -> dict[str, int]:
        files = self._scan()
        return {
            "records": len(files),
            "total_bytes": sum(f.size for f in files),
            "max_bytes": self.max_bytes,
        }

    def clear(self) -> int:
        removed = 0
        for info in self._scan():
            try:
                info.path.unlink()
                removed += 1
            except OSError:
                continue
        return removed

    # --- Internals ---

    def _schedule_eviction(self) -> None:
        if self._eviction_in_progress:
            return
        if self._eviction_task is not None and not self._eviction_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._eviction_task = loop.create_task(self._run_eviction())

    async def _run_eviction(self) -> None:
        try:
            await self.enforce_budget()
        except Exception:
            logger.exception("docs cache eviction failed")

    def _scan(self) -> list[_FileInfo]:
        infos: list[_FileInfo] = []
        try:
            paths = list(self.cache_dir.glob(f"*{RECORD_SUFFIX}"))
        except OSError:
            return infos
        for path in paths:
            try:
                st = path.stat()
            except OSError:
                continue
            infos.append(_FileInfo(path=path, size=st.st_size, mtime=st.st_mtime))
        return infos

    def _evict(self) -> int:
        files = self._scan()
        total = sum(f.size for f in files)
        if total <= self.max_bytes:
            return 0

        files.sort(key=lambda f: (f.mtime, f.path.name))
        removed = 0
        for info in files:
            if total <= self.max_bytes:
                break
            try:
                info.path.unlink()
            except FileNotFoundError:
                # Someone else removed it; it no longer counts either way.
                total -= info.size
                continue
            except OSError as exc:
                logger.debug("could not evict %s: %s", info.path.name, exc)
                continue
            total -= info.size
            removed += 1
        logger.info("docs cache eviction removed %d records, %d bytes remain", removed, total)
        return removed
