"""
Command-line interface for vaultd.

Provides commands for initializing a vault, indexing, searching, showing
status and serving the MCP server.
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .config import CONFIG_FILE, CONFIG_TEMPLATE, Config
from .errors import CorruptStoreError, VaultdError
from .logging_config import setup_logging
from .mcp_server import TRANSPORTS, VaultServer, run_server
from .models import IndexState
from .progress import ProgressEvent, ProgressReporter
from .store import SEARCH_MODES, VectorStore

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()


def _load_config(path: str) -> Config:
    vault_root = Path(path).resolve()
    if not vault_root.is_dir():
        console.print(f"[red]Error: Vault does not exist: {vault_root}[/red]")
        sys.exit(1)
    return Config(vault_root)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__, prog_name="vaultd")
def main(debug: bool):
    """vaultd - Local semantic search over a Markdown notes vault."""
    setup_logging(level="DEBUG" if debug else "WARNING")


@main.command()
@click.option("--path", "-p", default=".", help="Vault root path")
def init(path: str):
    """Initialize vaultd in a vault."""
    config = _load_config(path)

    if config.state_dir.exists():
        console.print(f"[yellow].vaultd directory already exists at {config.state_dir}[/yellow]")
        return

    config.state_dir.mkdir(parents=True)
    config_path = config.state_dir / CONFIG_FILE
    config_path.write_text(CONFIG_TEMPLATE, encoding="utf-8")

    console.print(f"[green]✓[/green] Initialized vaultd at {config.vault_root}")
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("\nNext steps:")
    console.print("  1. Set [cyan]VAULTD_API_KEY[/cyan] or edit the config for your embedding provider")
    console.print("  2. Run [cyan]vaultd index[/cyan] to index your notes")
    console.print("  3. Run [cyan]vaultd search <query>[/cyan] to search them")


@main.command()
@click.option("--path", "-p", default=".", help="Vault root path")
def index(path: str):
    """Rebuild the vector index from every note in the vault."""
    config = _load_config(path)
    server = VaultServer(config)

    console.print(f"[cyan]Indexing {config.vault_root}...[/cyan]")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        TextColumn("[cyan]ETA: {task.fields[eta]}"),
        console=console,
    ) as progress:
        task = progress.add_task("Embedding chunks...", total=None, eta="calculating...")

        def progress_callback(event: ProgressEvent):
            progress.update(
                task,
                total=event.total,
                completed=event.processed,
                eta=ProgressReporter.format_eta(event.eta_seconds),
            )

        async def run():
            try:
                return await server.indexer.reindex(progress_callback)
            finally:
                await server.stop()

        try:
            summary = asyncio.run(run())
        except VaultdError as e:
            console.print(f"\n[red]Error during indexing: {e}[/red]")
            sys.exit(1)

    if summary.state == IndexState.FAILED:
        console.print(f"\n[red]✗ Indexing failed: {summary.error}[/red]\n")
        console.print(str(summary))
        sys.exit(1)

    console.print("\n[green]✓ Indexing complete![/green]\n")
    console.print(str(summary))
    for error in summary.errors:
        console.print(
            f"[yellow]  batch {error.batch_index} (chunks {error.start}-"
            f"{error.start + error.size - 1}): {error.message}[/yellow]"
        )


@main.command()
@click.argument("query")
@click.option("--path", "-p", default=".", help="Vault root path")
@click.option("--count", "-n", type=int, default=None, help="Maximum number of results")
@click.option("--similarity", "-s", type=float, default=None, help="Minimum similarity (0-1)")
@click.option("--mode", "-m", type=click.Choice(SEARCH_MODES), help="Search mode (default: from config)")
def search(query: str, path: str, count: int, similarity: float, mode: str):
    """Search the indexed notes semantically.

    Examples:
      vaultd search "meeting notes about the roadmap"
      vaultd search "tomatoes" --mode fulltext -n 10
    """
    config = _load_config(path)
    if not config.db_path.exists():
        console.print("[red]Error: No index found. Run 'vaultd index' first.[/red]")
        sys.exit(1)

    count = count or config.get("search", "default_count", default=3)
    similarity = similarity if similarity is not None else config.get("search", "min_similarity", default=0.6)
    mode = mode or config.get("search", "mode", default="vector")
    server = VaultServer(config)

    console.print(f'[cyan]Searching ({mode}):[/cyan] "{query}"\n')

    async def run():
        await server.start()
        try:
            return await server.query.search(
                query,
                top_k=count,
                min_similarity=similarity,
                mode=mode,
                fts_weight=config.get("search", "fts_weight", default=0.5),
            )
        finally:
            await server.stop()

    try:
        results = asyncio.run(run())
    except (VaultdError, ValueError) as e:
        console.print(f"[red]Error during search: {e}[/red]")
        if logger.isEnabledFor(logging.DEBUG):
            raise
        sys.exit(1)

    if not results:
        console.print("[yellow]No results found.[/yellow]")
        return

    for i, result in enumerate(results, 1):
        title = f"[bold]{i}. {result.source_path}[/bold] [dim](score: {result.score:.3f})[/dim]"
        console.print(Panel(result.text.strip(), title=title, title_align="left"))


@main.command()
@click.option("--path", "-p", default=".", help="Vault root path")
def status(path: str):
    """Show index statistics."""
    config = _load_config(path)
    db_path = config.db_path

    if not db_path.exists():
        console.print("[yellow]No index found. Run 'vaultd index' to create one.[/yellow]")
        return

    try:
        store = VectorStore.deserialize(db_path.read_bytes())
    except (CorruptStoreError, OSError) as e:
        console.print(f"[red]Error reading index: {e}[/red]")
        sys.exit(1)

    table = Table(title="Index Statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Store file", str(db_path))
    table.add_row("Total chunks", str(store.count()))
    table.add_row("Notes", str(len(store.source_paths())))
    table.add_row("Dimension", str(store.dimension))
    table.add_row("Index size", f"{db_path.stat().st_size / 1024 / 1024:.2f} MB")
    table.add_row("Embedding model", config.get("embeddings", "model", default=""))

    console.print(table)


@main.command()
@click.option("--path", "-p", default=".", help="Vault root path")
@click.option("--transport", "-t", type=click.Choice(TRANSPORTS), help="MCP transport (default: from config)")
@click.option("--port", type=int, help="Port for HTTP transports (default: from config)")
def serve(path: str, transport: str, port: int):
    """Run the MCP server for a vault."""
    config = _load_config(path)
    if not config.state_dir.exists():
        console.print("[red]Error: No .vaultd directory found. Run 'vaultd init' first.[/red]")
        sys.exit(1)
    if port:
        config.set("server", "port", value=port)

    log_file = config.get("logging", "file")
    setup_logging(
        level=config.get("logging", "level", default="INFO"),
        log_file=config.vault_root / log_file if log_file else None,
        json_format=config.get("logging", "json", default=False),
    )
    run_server(config, transport=transport)


if __name__ == "__main__":
    main()
