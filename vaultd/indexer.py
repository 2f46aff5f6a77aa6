"""
Core indexing logic for vaultd.

Rebuilds the whole vector store from the vault: enumerate, filter, chunk,
embed in batches, insert into a fresh store, persist, then reload the
active store from disk.
"""

import logging
import time
from typing import Optional

from .chunkers import ChunkStrategy, RecursiveTextChunker
from .config import STATE_DIR, Config
from .documents import DocumentSource, split_front_matter
from .embeddings import EmbeddingDimension, EmbeddingProvider
from .errors import AlreadyRunningError, ProviderError, VaultdError
from .ignore import DEFAULT_IGNORE_PATTERNS, IgnoreMatcher
from .models import (
    BatchError,
    ChunkRecord,
    DocumentRef,
    IndexRunSummary,
    IndexState,
    encode_metadata,
)
from .persistence import PersistenceManager
from .progress import ProgressCallback, ProgressReporter
from .store import VectorStore

logger = logging.getLogger(__name__)


class Indexer:
    """
    Full-corpus indexer.

    Features:
    - Extension, ignore-pattern and state-directory filtering
    - Front-matter stripped from chunk text and stored as metadata
    - Batched embedding; a failed batch is skipped, not fatal
    - The new store is built off to the side and only becomes active
      through a reload from the saved file
    - One run at a time; a concurrent request fails fast
    """

    def __init__(
        self,
        source: DocumentSource,
        provider: EmbeddingProvider,
        dimension: EmbeddingDimension,
        persistence: PersistenceManager,
        config: Config,
        chunker: Optional[ChunkStrategy] = None,
    ):
        """
        Initialize the indexer.

        Args:
            source: Document source to read notes from
            provider: Embedding provider
            dimension: Process-wide embedding dimension cell
            persistence: Persistence manager that owns the active store
            config: Configuration object
            chunker: Chunking strategy (built from config if omitted)
        """
        self.source = source
        self.provider = provider
        self.dimension = dimension
        self.persistence = persistence
        self.config = config

        self.chunker = chunker or RecursiveTextChunker(
            chunk_size=config.get("indexer", "chunk_size", default=1000),
            chunk_overlap=config.get("indexer", "chunk_overlap", default=200),
            separators=config.get("indexer", "separators"),
        )
        self.ignore = IgnoreMatcher(
            config.get("indexer", "ignore_patterns", default=DEFAULT_IGNORE_PATTERNS)
        )
        self.extensions = {
            ext.lower().lstrip(".") for ext in config.get("indexer", "extensions", default=["md"])
        }

        batch_size = config.get("embeddings", "batch_size", default=10)
        if batch_size <= 0:
            raise ValueError(f"embeddings.batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size

        self._running = False
        self._state = IndexState.IDLE
        self.last_summary: Optional[IndexRunSummary] = None

    @property
    def state(self) -> IndexState:
        """Current state of the indexing state machine."""
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    def set_ignore_patterns(self, patterns: str) -> None:
        """Recompile the ignore patterns; takes effect on the next run."""
        self.ignore = IgnoreMatcher(patterns)

    def is_candidate(self, ref: DocumentRef) -> bool:
        """Check whether a document should be indexed."""
        if ref.extension not in self.extensions:
            return False
        if ref.path == STATE_DIR or ref.path.startswith(f"{STATE_DIR}/"):
            return False
        return not self.ignore.ignores(ref.path)

    async def reindex(self, progress_callback: Optional[ProgressCallback] = None) -> IndexRunSummary:
        """
        Rebuild the vector store from every eligible document.

        The active store is reloaded from disk when the run ends, whatever
        the outcome.

        Args:
            progress_callback: Optional callback(ProgressEvent), sync or async

        Returns:
            IndexRunSummary; a failed run is reported with state FAILED

        Raises:
            AlreadyRunningError: If a run is already in progress
        """
        if self._running:
            raise AlreadyRunningError()
        self._running = True
        self._state = IndexState.RUNNING

        start_time = time.monotonic()
        summary = IndexRunSummary(state=IndexState.RUNNING)
        logger.info("Starting vault reindex")

        try:
            try:
                await self._run(summary, progress_callback)
                summary.state = IndexState.COMPLETED
            except (VaultdError, OSError, ValueError) as e:
                summary.state = IndexState.FAILED
                summary.error = str(e)
                logger.error(f"Reindex failed: {e}", exc_info=True)

            summary.duration_seconds = time.monotonic() - start_time
            self._state = summary.state
            self.last_summary = summary
        finally:
            try:
                await self.persistence.force_reload()
            except (VaultdError, OSError) as e:
                logger.error(f"Failed to reload store after reindex: {e}", exc_info=True)
            self._state = IndexState.IDLE
            self._running = False

        logger.info(
            f"Reindex {summary.state.value}: {summary.succeeded}/{summary.total_chunks} chunks "
            f"from {summary.documents} documents, {summary.skipped} skipped"
        )
        return summary

    async def _run(self, summary: IndexRunSummary, progress_callback: Optional[ProgressCallback]) -> None:
        refs = await self.source.list_documents()
        candidates = [ref for ref in refs if self.is_candidate(ref)]
        summary.documents = len(candidates)
        logger.info(f"Found {len(candidates)} documents to index ({len(refs)} files in vault)")

        pending = await self._collect_chunks(candidates, summary)
        summary.total_chunks = len(pending)
        logger.info(f"Collected {len(pending)} chunks")

        dim = await self.dimension.resolve(self.provider)
        store = VectorStore.create(dim)

        reporter = ProgressReporter(len(pending), progress_callback)
        for batch_index, start in enumerate(range(0, len(pending), self.batch_size)):
            batch = pending[start:start + self.batch_size]
            await self._index_batch(store, batch, batch_index, start, summary)
            await reporter.update(start + len(batch))
        logger.info(reporter.get_summary())

        try:
            await self.persistence.save_store(store)
            summary.saved = True
        except OSError as e:
            logger.error(f"Failed to save new store: {e}", exc_info=True)

    async def _collect_chunks(
        self,
        candidates: list[DocumentRef],
        summary: IndexRunSummary,
    ) -> list[tuple[str, str, str]]:
        """Read and chunk documents into (text, source_path, metadata_json) tuples."""
        pending: list[tuple[str, str, str]] = []
        for ref in candidates:
            try:
                text = await self.source.read_text(ref.path)
            except (OSError, UnicodeDecodeError, VaultdError) as e:
                logger.warning(f"Skipping {ref.path}: {e}")
                summary.documents_failed += 1
                continue

            # One read: metadata and body come from the same text
            metadata, body = split_front_matter(text)
            encoded = encode_metadata(metadata)
            chunks = [chunk for chunk in self.chunker.split_text(body) if chunk.strip()]
            pending.extend((chunk, ref.path, encoded) for chunk in chunks)
            logger.debug(f"{ref.path}: {len(chunks)} chunks")
        return pending

    async def _index_batch(
        self,
        store: VectorStore,
        batch: list[tuple[str, str, str]],
        batch_index: int,
        start: int,
        summary: IndexRunSummary,
    ) -> None:
        try:
            vectors = await self.provider.embed([text for text, _, _ in batch])
            if len(vectors) != len(batch):
                raise ProviderError(f"Got {len(vectors)} embeddings for {len(batch)} chunks")
        except ProviderError as e:
            logger.warning(f"Skipping batch {batch_index} (chunks {start}-{start + len(batch) - 1}): {e}")
            summary.skipped += len(batch)
            summary.errors.append(
                BatchError(batch_index=batch_index, start=start, size=len(batch), message=str(e))
            )
            return

        records = [
            ChunkRecord(text=text, embedding=vector, metadata=metadata, source_path=path)
            for (text, path, metadata), vector in zip(batch, vectors)
        ]
        store.insert_many(records)
        summary.succeeded += len(records)
