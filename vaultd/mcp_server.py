"""
MCP server for vaultd.

Exposes vault search, indexing and file tools to MCP clients via the
Model Context Protocol.
"""

import argparse
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import Context, FastMCP

from .config import Config
from .documents import DocumentSource, FileSystemDocumentSource
from .embeddings import EmbeddingDimension, EmbeddingProvider, create_embedding_provider
from .errors import AlreadyRunningError, NotReadyError, VaultdError
from .indexer import Indexer
from .logging_config import set_log_level, setup_logging
from .models import IndexState
from .persistence import PersistenceManager, SleepFunc, StoreCell
from .progress import ProgressCallback, ProgressEvent
from .query import QueryService, format_results
from .store import VectorStore
from .tools import VaultFileTools

logger = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "sse", "streamable-http")


class VaultServer:
    """
    Server facade owning the active store and its collaborators.

    Tool handlers return human-readable strings and never raise.
    """

    def __init__(
        self,
        config: Config,
        source: Optional[DocumentSource] = None,
        provider: Optional[EmbeddingProvider] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize the server.

        Args:
            config: Configuration object
            source: Document source (defaults to the vault directory)
            provider: Embedding provider (built from config if omitted)
            sleep: Awaitable sleep used by autosave
        """
        self.config = config
        self.source = source or FileSystemDocumentSource(config.vault_root)
        self.provider = provider or create_embedding_provider(config)
        self.cell = StoreCell()
        self.dimension = EmbeddingDimension()

        self.persistence = PersistenceManager(
            self.cell,
            config.db_path,
            self.provider,
            self.dimension,
            save_interval_minutes=config.get("persistence", "save_interval_minutes", default=5),
            sleep=sleep,
        )
        self.indexer = self._build_indexer()
        self.query = QueryService(self.cell, self.provider)
        self.files: Optional[VaultFileTools] = (
            VaultFileTools(self.source) if isinstance(self.source, FileSystemDocumentSource) else None
        )

    def _build_indexer(self) -> Indexer:
        return Indexer(self.source, self.provider, self.dimension, self.persistence, self.config)

    @property
    def store(self) -> Optional[VectorStore]:
        """The active store, if any."""
        return self.cell.get()

    async def start(self) -> None:
        """Load the persisted store. A failure leaves the server running without one."""
        try:
            store = await self.persistence.get_or_load()
            logger.info(f"vaultd ready for {self.config.vault_root} ({store.count()} entries)")
        except (VaultdError, OSError) as e:
            logger.error(f"Failed to load vector store: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop autosave and release the store without saving."""
        self.persistence.close()
        logger.info("vaultd stopped")

    async def reload(self) -> VectorStore:
        """Reload the active store from disk."""
        return await self.persistence.force_reload()

    async def reload_settings(self, config: Config, provider: Optional[EmbeddingProvider] = None) -> None:
        """
        Apply new settings.

        Rebuilds the embedding provider, forgets the probed dimension,
        recompiles the ignore patterns and applies the configured log
        level. The active store stays loaded.

        Raises:
            AlreadyRunningError: If a reindex is in progress
            ValueError: If the configured log level is unknown
        """
        if self.indexer.running:
            raise AlreadyRunningError("Cannot reload settings while indexing")
        set_log_level(config.get("logging", "level", default="INFO"))

        self.config = config
        self.provider = provider or create_embedding_provider(config)
        self.dimension.reset()

        self.persistence.provider = self.provider
        self.persistence.db_path = config.db_path
        self.persistence.save_interval_minutes = config.get(
            "persistence", "save_interval_minutes", default=5
        )
        self.query.provider = self.provider
        self.indexer = self._build_indexer()
        logger.info(f"Settings reloaded (model={self.provider.model_name})")

    async def search(
        self,
        query: str,
        count: int = 3,
        similarity: float = 0.6,
        mode: Optional[str] = None,
    ) -> str:
        """Search the vault and format the hits as numbered documents."""
        try:
            results = await self.query.search(
                query,
                top_k=count,
                min_similarity=similarity,
                mode=mode or self.config.get("search", "mode", default="vector"),
                fts_weight=self.config.get("search", "fts_weight", default=0.5),
            )
        except NotReadyError as e:
            return f"Error: {e}"
        except (VaultdError, ValueError) as e:
            logger.error(f"Search failed: {e}", exc_info=True)
            return f"Error: Failed to perform vector search: {e}"
        return format_results(results)

    async def count_entries(self) -> str:
        store = self.cell.get()
        if store is None:
            return json.dumps({"error": str(NotReadyError())})
        return json.dumps({"count": store.count()})

    async def reindex(self, progress_callback: Optional[ProgressCallback] = None) -> str:
        """Run a full reindex and describe the outcome."""
        try:
            summary = await self.indexer.reindex(progress_callback)
        except AlreadyRunningError as e:
            return f"Error: {e}"

        if summary.state == IndexState.FAILED:
            return f"Error: Indexing failed: {summary.error}"

        message = (
            f"Indexing complete. Indexed {summary.succeeded} of {summary.total_chunks} chunks "
            f"from {summary.documents} documents"
        )
        if summary.skipped:
            message += f" ({summary.skipped} skipped in {len(summary.errors)} failed batches)"
        message += ". Database saved." if summary.saved else ". Database could not be saved."
        return message

    async def save_db(self) -> str:
        if self.cell.get() is None:
            return f"Error: {NotReadyError()}"
        if await self.persistence.save():
            return "Database saved successfully."
        return "Error: Failed to save database. See logs for details."

    def __repr__(self) -> str:
        """String representation."""
        return f"VaultServer(vault={self.config.vault_root}, store={self.cell.get()!r})"


def create_mcp(server: VaultServer) -> FastMCP:
    """
    Build a FastMCP app exposing the server's enabled tools.

    Args:
        server: VaultServer to dispatch to

    Returns:
        FastMCP instance whose lifespan starts and stops the server
    """

    sessions = 0

    # HTTP transports enter the lifespan once per client session
    @asynccontextmanager
    async def lifespan(app: FastMCP) -> AsyncIterator[VaultServer]:
        nonlocal sessions
        sessions += 1
        if sessions == 1:
            await server.start()
        try:
            yield server
        finally:
            sessions -= 1
            if sessions == 0:
                await server.stop()

    mcp = FastMCP(
        "vaultd",
        lifespan=lifespan,
        host=server.config.get("server", "host", default="127.0.0.1"),
        port=server.config.get("server", "port", default=8080),
    )

    def register(name: str, description: str):
        def decorator(fn):
            if server.config.tool_enabled(name):
                mcp.tool(name=name, description=description)(fn)
            return fn
        return decorator

    @register(
        "search",
        "Searches the vault's notes for content semantically similar to the query. "
        "If results aren't relevant, rephrase the query or lower the similarity threshold.",
    )
    async def search(query: str, count: int = 3, similarity: float = 0.6) -> str:
        return await server.search(query, count=count, similarity=similarity)

    @register("count_entries", "Counts the chunks in the vault's vector index.")
    async def count_entries() -> str:
        return await server.count_entries()

    @register("reindex", "Rebuilds the vector index from every note in the vault.")
    async def reindex(ctx: Context) -> str:
        async def on_progress(event: ProgressEvent) -> None:
            await ctx.report_progress(event.processed, event.total)

        return await server.reindex(on_progress)

    @register("save_db", "Saves the vector index to disk.")
    async def save_db() -> str:
        return await server.save_db()

    files = server.files
    if files is None:
        return mcp

    @register("list_files", "Lists sub-folders and files in a vault folder. Use '.' for the vault root.")
    async def list_files(relative_path: str = ".") -> str:
        return await files.list_files(relative_path)

    @register("read_file", "Reads a note. Set line_number to prefix each line with its number.")
    async def read_file(relative_path: str, line_number: bool = False) -> str:
        return await files.read_file(relative_path, line_number)

    @register("create_file", "Creates a new note. Fails if a file already exists at the path.")
    async def create_file(relative_path: str, content: str) -> str:
        return await files.create_file(relative_path, content)

    @register("edit_file", "Replaces a 1-based inclusive line range of a note with new content.")
    async def edit_file(relative_path: str, start_line: int, end_line: int, new_content: str) -> str:
        return await files.edit_file(relative_path, start_line, end_line, new_content)

    @register("delete_file", "Deletes a file from the vault.")
    async def delete_file(relative_path: str) -> str:
        return await files.delete_file(relative_path)

    @register("create_folder", "Creates a folder, including missing parent folders.")
    async def create_folder(relative_path: str) -> str:
        return await files.create_folder(relative_path)

    @register("delete_folder", "Deletes a folder. Non-empty folders require force=true.")
    async def delete_folder(relative_path: str, force: bool = False) -> str:
        return await files.delete_folder(relative_path, force)

    @register("create_link", "Adds a [[wikilink]] from one note to another, optionally in both directions.")
    async def create_link(
        source_path: str,
        target_path: str,
        alias: Optional[str] = None,
        bidirectional: bool = False,
        create_target_if_missing: bool = False,
    ) -> str:
        return await files.create_link(
            source_path, target_path, alias, bidirectional, create_target_if_missing
        )

    return mcp


def main() -> None:
    """Entry point for the MCP server."""
    parser = argparse.ArgumentParser(
        description="vaultd MCP server for semantic search over a notes vault"
    )
    parser.add_argument(
        "--vault",
        type=Path,
        default=Path.cwd(),
        help="Root directory of the vault (default: current directory)",
    )
    parser.add_argument("--transport", choices=TRANSPORTS, help="MCP transport (default: from config)")
    parser.add_argument("--port", type=int, help="Port for HTTP transports (default: from config)")
    parser.add_argument("--log-level", help="Log level (default: from config)")

    args = parser.parse_args()
    vault_root = args.vault.resolve()
    config = Config(vault_root)

    log_file = config.get("logging", "file")
    setup_logging(
        level=args.log_level or config.get("logging", "level", default="INFO"),
        log_file=vault_root / log_file if log_file else None,
        json_format=config.get("logging", "json", default=False),
    )

    if not config.state_dir.exists():
        logger.error(
            f"No .vaultd directory found in {vault_root}. "
            f"Run 'vaultd init' first."
        )
        return

    if args.port:
        config.set("server", "port", value=args.port)
    run_server(config, transport=args.transport)


def run_server(config: Config, transport: Optional[str] = None) -> None:
    """
    Run the MCP server for a vault until interrupted.

    Args:
        config: Configuration of the vault to serve
        transport: "stdio", "sse" or "streamable-http" (default: from config)
    """
    transport = transport or config.get("server", "transport", default="sse")
    if transport not in TRANSPORTS:
        raise ValueError(f"Unknown transport: {transport}. Use one of {', '.join(TRANSPORTS)}")

    mcp = create_mcp(VaultServer(config))
    logger.info(f"Starting vaultd MCP server ({transport})...")
    mcp.run(transport=transport)


if __name__ == "__main__":
    main()
