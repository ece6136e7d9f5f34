"""Fetch command documentation from tldr or man, through the docs cache."""

from __future__ import annotations

import asyncio
import logging
import os
import re

from heymem.docs.cache import DocsCache
from heymem.types import DocSource

logger = logging.getLogger(__name__)

_COMMAND_RE = re.compile(r"^[A-Za-z0-9._+-]+$")
_OVERSTRIKE_RE = re.compile(r".\x08")
_SECTION_HEADERS = ("NAME", "SYNOPSIS", "DESCRIPTION")
_HEADER_RE = re.compile(r"^[A-Z][A-Z\s]+$")


def is_valid_command(command: str) -> bool:
    return bool(command) and len(command) < 64 and bool(_COMMAND_RE.match(command))


def extract_man_sections(text: str, max_sections: int = 2) -> str | None:
    """Keep NAME plus one of SYNOPSIS/DESCRIPTION from rendered man output."""
    out: list[str] = []
    in_section = False
    seen = 0
    for line in _OVERSTRIKE_RE.sub("", text).splitlines():
        stripped = line.strip()
        if stripped in _SECTION_HEADERS:
            if seen >= max_sections:
                break
            in_section = True
            seen += 1
            out.extend(["", f"### {stripped}"])
            continue
        if in_section and len(stripped) > 2 and _HEADER_RE.match(stripped):
            break
        if in_section and stripped:
            out.append(line)
    result = "\n".join(out).strip()
    return result or None


class DocsFetcher:
    def __init__(self, cache: DocsCache, timeout: float = 5.0) -> None:
        self.cache = cache
        self.timeout = timeout

    async def fetch(self, command: str, refresh: bool = False) -> tuple[str, DocSource] | None:
        """Return (content, source) for a command, or None if no docs exist."""
        if not is_valid_command(command):
            return None
        if not refresh:
            record = self.cache.get_record(command)
            if record is not None:
                return record.content, record.source

        tldr = await self._run(["tldr", command])
        if tldr:
            await self.cache.set(command, tldr, DocSource.TLDR)
            return tldr, DocSource.TLDR

        raw = await self._run(["man", command], env={"MANPAGER": "cat", "MANWIDTH": "100"})
        man = extract_man_sections(raw) if raw else None
        if man:
            await self.cache.set(command, man, DocSource.MAN)
            return man, DocSource.MAN
        return None

    async def _run(self, argv: list[str], env: dict[str, str] | None = None) -> str | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env={**os.environ, **(env or {})},
            )
        except OSError:
            return None
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.debug("%s timed out after %.1fs", argv[0], self.timeout)
            return None
        if proc.returncode != 0:
            return None
        text = stdout.decode("utf-8", errors="replace").strip()
        return text or None
