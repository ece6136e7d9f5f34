"""heymem CLI."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from heymem.config import Config
from heymem.docs.fetcher import DocsFetcher, is_valid_command
from heymem.memory.session import SessionMemory
from heymem.utils import json_dumps


def _get_memory(data_dir: str | None = None) -> SessionMemory:
    config = Config()
    if data_dir:
        config.data_dir = Path(data_dir)
    return SessionMemory(config)


@click.group()
@click.option("--data-dir", envvar="HEYMEM_DATA_DIR", default=None, help="Data directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: str | None, verbose: bool) -> None:
    """heymem — interaction memory and docs cache for a terminal assistant."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show memory status."""
    memory = _get_memory(ctx.obj.get("data_dir"))
    st = memory.status()
    if as_json:
        click.echo(json_dumps(st))
    else:
        docs = st["docs_cache"]
        click.echo("heymem status")
        click.echo(f"  Entries:         {st['entries']}")
        click.echo(f"  Vectors:         {st['vectors']} ({st['mapped_vectors']} mapped)")
        click.echo(f"  Embedding model: {st['embedding_model']}")
        click.echo(f"  Docs cache:      {docs['records']} records, "
                   f"{docs['total_bytes']}/{docs['max_bytes']} bytes")
    asyncio.run(memory.close())


@main.command()
@click.argument("prompt")
@click.argument("response")
@click.option("--cwd", default=None, help="Working directory to record")
@click.option("--no-embed", is_flag=True, help="Skip embedding (keyword search only)")
@click.pass_context
def append(ctx: click.Context, prompt: str, response: str, cwd: str | None, no_embed: bool) -> None:
    """Record one prompt/response interaction."""
    memory = _get_memory(ctx.obj.get("data_dir"))

    async def _run() -> int:
        try:
            if no_embed:
                return memory.append_sync(prompt, response, cwd)
            return await memory.append(prompt, response, cwd)
        finally:
            await memory.close()

    entry_id = asyncio.run(_run())
    click.echo(f"Recorded entry {entry_id}")


@main.command()
@click.option("--limit", "-n", default=5, help="Number of entries")
@click.pass_context
def recent(ctx: click.Context, limit: int) -> None:
    """Show the most recent interactions."""
    memory = _get_memory(ctx.obj.get("data_dir"))
    entries = memory.recent(limit)
    if not entries:
        click.echo("No interactions recorded.")
    for e in entries:
        click.echo(f"\n--- [{e.id}] {e.cwd} ---")
        click.echo(f"User: {e.prompt}")
        click.echo(f"Assistant: {e.response}")
    asyncio.run(memory.close())


@main.command()
@click.argument("query")
@click.option("--top-k", "-k", default=5, help="Number of results")
@click.option("--keyword-only", "-K", is_flag=True, help="Keyword search only (no embeddings)")
@click.pass_context
def search(ctx: click.Context, query: str, top_k: int, keyword_only: bool) -> None:
    """Search past interactions."""
    memory = _get_memory(ctx.obj.get("data_dir"))

    async def _run():
        try:
            if keyword_only:
                return memory.search_keyword(query, limit=top_k)
            return await memory.search(query, limit=top_k)
        finally:
            await memory.close()

    results = asyncio.run(_run())
    if not results:
        click.echo("No results found.")
    for i, r in enumerate(results, 1):
        click.echo(f"\n--- Result {i} (score: {r.score:.4f}, origin: {r.origin.value}) ---")
        click.echo(f"ID: {r.entry.id}")
        click.echo(r.entry.prompt[:200].replace("\n", " "))


@main.command()
@click.argument("command")
@click.option("--refresh", is_flag=True, help="Ignore the cached copy")
@click.pass_context
def docs(ctx: click.Context, command: str, refresh: bool) -> None:
    """Show (and cache) tldr/man documentation for a command."""
    if not is_valid_command(command):
        raise click.BadParameter(f"not a command name: {command!r}", param_hint="COMMAND")
    memory = _get_memory(ctx.obj.get("data_dir"))
    fetcher = DocsFetcher(memory.docs_cache, timeout=memory.config.docs_cache.fetch_timeout)

    async def _run():
        try:
            return await fetcher.fetch(command, refresh=refresh)
        finally:
            await memory.close()

    found = asyncio.run(_run())
    if found is None:
        click.echo(f"No documentation found for {command}.")
        return
    content, source = found
    click.echo(f"## Documentation for `{command}` ({source.value})")
    click.echo(content)


@main.command(name="cache-evict")
@click.pass_context
def cache_evict(ctx: click.Context) -> None:
    """Run one docs cache eviction pass now."""
    memory = _get_memory(ctx.obj.get("data_dir"))

    async def _run() -> int:
        try:
            return await memory.docs_cache.enforce_budget()
        finally:
            await memory.close()

    removed = asyncio.run(_run())
    st = memory.docs_cache.stats()
    click.echo(f"Removed {removed} records; {st['total_bytes']}/{st['max_bytes']} bytes in use")


if __name__ == "__main__":
    main()
