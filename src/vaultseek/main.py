import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich import print
from rich.table import Table

from vaultseek.adapters.filesystem import FileSystemVault
from vaultseek.config import Settings, get_settings
from vaultseek.core.index.manager import ChunkIndexManager
from vaultseek.core.index.persistence import IndexPersistenceError, IndexPersistenceManager
from vaultseek.core.models import SearchOptions, SearchRequest, TimeRange
from vaultseek.core.patterns import PathFilter
from vaultseek.core.search import VaultSearch
from vaultseek.lib.embeddings import create_embedder
from vaultseek.lib.llm import create_chat_model

logger = logging.getLogger(__name__)

APP_HELP = """
vaultseek: hybrid search over a folder of Markdown notes.

Each search expands the query, greps the vault, follows [[wikilinks]], ranks the
candidates with a throwaway full-text index (and optionally embeddings) and
fuses the rankings. Notes named as [[Title]] or tagged with a searched #tag are
always included.

Configure with VAULTSEEK_* environment variables or ~/.vaultseek/.env.
"""

INDEX_HELP = """
Manage the persisted chunk-embedding index used for semantic search.
Requires VAULTSEEK_OPENROUTER_API_KEY.
"""

app = typer.Typer(name="vaultseek", help=APP_HELP, no_args_is_help=True)
index_app = typer.Typer(name="index", help=INDEX_HELP)
app.add_typer(index_app, name="index")


@app.callback()
def main(
    vault: Optional[Path] = typer.Option(None, "--vault", "-v", help="Vault folder (overrides VAULTSEEK_VAULT_PATH)"),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output"),
):
    settings = get_settings()
    if vault is not None:
        settings.vault_path = vault.expanduser()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _load_vault(settings: Settings) -> FileSystemVault:
    if not settings.vault_path.is_dir():
        print(f"[red]Vault folder not found: {settings.vault_path}[/red]")
        raise typer.Exit(code=1)
    vault = FileSystemVault(settings.vault_path)
    vault.refresh()
    return vault


def _index_manager(settings: Settings, vault: FileSystemVault, required: bool) -> Optional[ChunkIndexManager]:
    embedder = create_embedder(settings)
    if embedder is None:
        if required:
            print("[red]VAULTSEEK_OPENROUTER_API_KEY is not set; embeddings are unavailable.[/red]")
            raise typer.Exit(code=1)
        return None
    persistence = IndexPersistenceManager(
        settings.get_index_dir(), settings.index_base_name, settings.max_partition_bytes
    )
    return ChunkIndexManager(
        vault,
        persistence,
        embedder,
        path_filter=PathFilter.from_settings(settings, vault),
        chunk_size=settings.chunk_size,
        batch_size=settings.embedding_batch_size,
    )


def _parse_date(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        print(f"[red]Invalid date: {value} (expected YYYY-MM-DD)[/red]")
        raise typer.Exit(code=1)
    if end_of_day and len(value) <= 10:
        parsed = parsed.replace(hour=23, minute=59, second=59)
    return parsed


@app.command()
def search(
    query: str = typer.Argument(..., help="Free-text query; [[Title]] and #tag are honored"),
    tag: List[str] = typer.Option([], "--tag", "-t", help="Salient term or #tag (repeatable)"),
    since: Optional[str] = typer.Option(None, "--since", help="Time range start (YYYY-MM-DD)"),
    until: Optional[str] = typer.Option(None, "--until", help="Time range end (YYYY-MM-DD)"),
    max_results: Optional[int] = typer.Option(None, "--max-results", "-n", help="Maximum ranked results"),
    semantic: Optional[bool] = typer.Option(None, "--semantic/--no-semantic", help="Use embeddings"),
    active: Optional[str] = typer.Option(None, "--active", help="Vault path of the note currently open"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
):
    """
    Search the vault.
    """
    settings = get_settings()
    vault = _load_vault(settings)
    if active:
        vault.set_active_file(active)

    time_range = None
    if since or until:
        start = _parse_date(since) or datetime.fromtimestamp(0)
        end = _parse_date(until, end_of_day=True) or datetime.now()
        time_range = TimeRange(start=start, end=end)

    try:
        request = SearchRequest(query=query, salient_terms=tag, time_range=time_range)
        options = SearchOptions.from_settings(settings, max_results=max_results, enable_semantic=semantic)
    except ValidationError as e:
        print(f"[red]Invalid search: {e.errors()[0]['msg']}[/red]")
        raise typer.Exit(code=1)

    searcher = VaultSearch(
        vault,
        vault,
        vault,
        settings=settings,
        chat_model=create_chat_model(settings),
        embedder=create_embedder(settings) if options.enable_semantic else None,
        index_manager=_index_manager(settings, vault, required=False) if options.enable_semantic else None,
    )
    results = asyncio.run(searcher.search(request, options))

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        return
    if not results:
        print("[yellow]No matches found.[/yellow]")
        return

    table = Table(title=f"Results for {query!r}")
    table.add_column("Score", justify="right")
    table.add_column("Note")
    table.add_column("Source")
    table.add_column("Modified")
    for result in results:
        score_color = "green" if result.include_in_context else "yellow"
        table.add_row(
            f"[{score_color}]{result.score:.2f}[/{score_color}]",
            result.path,
            result.source,
            result.mtime.strftime("%Y-%m-%d %H:%M"),
        )
    print(table)


@index_app.command("rebuild")
def index_rebuild():
    """Re-embed every note and rewrite the index."""
    settings = get_settings()
    vault = _load_vault(settings)
    manager = _index_manager(settings, vault, required=True)
    try:
        count = asyncio.run(manager.index_vault())
    except IndexPersistenceError as e:
        print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    print(f"[green]Indexed {count} notes[/green]")


@index_app.command("update")
def index_update(path: Optional[str] = typer.Argument(None, help="Reindex only this note")):
    """Index new and modified notes (or one note) and drop deleted ones."""
    settings = get_settings()
    vault = _load_vault(settings)
    manager = _index_manager(settings, vault, required=True)
    try:
        if path:
            changed = asyncio.run(manager.reindex_file(path))
            print(f"[green]Reindexed {path}[/green]" if changed else f"[dim]{path} is up to date[/dim]")
        else:
            count = asyncio.run(manager.index_vault_incremental())
            print(f"[green]Updated {count} notes[/green]")
    except IndexPersistenceError as e:
        print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@index_app.command("remove")
def index_remove(path: str = typer.Argument(..., help="Vault path of the note")):
    """Drop one note's chunks from the index."""
    settings = get_settings()
    vault = _load_vault(settings)
    manager = _index_manager(settings, vault, required=True)
    removed = asyncio.run(manager.remove_file(path))
    print(f"[green]Removed {path}[/green]" if removed else f"[yellow]{path} was not indexed[/yellow]")


@index_app.command("clear")
def index_clear(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Delete every index partition."""
    settings = get_settings()
    if not yes:
        typer.confirm(f"Delete the index in {settings.get_index_dir()}?", abort=True)
    persistence = IndexPersistenceManager(settings.get_index_dir(), settings.index_base_name)
    removed = asyncio.run(persistence.clear_index())
    print(f"[green]Removed {removed} index files[/green]")


@index_app.command("status")
def index_status():
    """Show partitions and record counts."""
    settings = get_settings()
    persistence = IndexPersistenceManager(
        settings.get_index_dir(), settings.index_base_name, settings.max_partition_bytes
    )
    paths = persistence.existing_partition_paths()
    if not paths:
        print("[yellow]No index found.[/yellow]")
        return

    records = asyncio.run(persistence.read_records())
    table = Table(title=f"Index in {settings.get_index_dir()}")
    table.add_column("Partition")
    table.add_column("Size", justify="right")
    for path in paths:
        table.add_row(path.name, f"{path.stat().st_size / (1024 * 1024):.1f} MB")
    print(table)
    print(f"{len(records)} chunks from {len({r.path for r in records})} notes")


if __name__ == "__main__":
    app()
