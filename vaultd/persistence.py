"""
Persistence for the active vector store.

Owns the active store cell: lazy load-or-create, periodic autosave,
explicit atomic save and close.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .embeddings import EmbeddingDimension, EmbeddingProvider
from .errors import CorruptStoreError
from .store import VectorStore

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class StoreCell:
    """
    Holder of the single active store reference.

    Swapping is a plain assignment; readers that captured the previous
    store keep using it until they drop the reference.
    """

    def __init__(self, store: Optional[VectorStore] = None):
        self._store = store

    def get(self) -> Optional[VectorStore]:
        """Current store, or None if nothing is loaded."""
        return self._store

    def swap(self, store: Optional[VectorStore]) -> Optional[VectorStore]:
        """Install a new store and return the previous one."""
        previous, self._store = self._store, store
        return previous


def _write_atomic(path: Path, data: bytes) -> None:
    """Write data to a sibling temp file, then rename it over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class PersistenceManager:
    """
    Load, save and autosave the active vector store.

    Features:
    - get_or_load() restores from disk or falls back to an empty store
    - A corrupt file is left on disk untouched
    - save() is atomic and drops overlapping requests
    - save_store() shares the same lock but waits for its turn
    - Autosave runs as a cancellable asyncio task with an injectable sleep
    """

    def __init__(
        self,
        cell: StoreCell,
        db_path: Path,
        provider: EmbeddingProvider,
        dimension: EmbeddingDimension,
        save_interval_minutes: float = 5,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize the manager.

        Args:
            cell: Active store cell shared with the server
            db_path: Path of the persisted store file
            provider: Embedding provider, used to probe the dimension
            dimension: Process-wide embedding dimension cell
            save_interval_minutes: Autosave interval
            sleep: Awaitable sleep used by the autosave loop
        """
        self.cell = cell
        self.db_path = Path(db_path)
        self.provider = provider
        self.dimension = dimension
        self.save_interval_minutes = save_interval_minutes
        self._sleep = sleep
        self._autosave_task: Optional[asyncio.Task] = None
        self._load_lock = asyncio.Lock()
        # Held for the whole serialize-and-write of any store
        self._save_lock = asyncio.Lock()

    @property
    def saving(self) -> bool:
        """True while a save is in progress."""
        return self._save_lock.locked()

    @property
    def autosave_running(self) -> bool:
        """True while the autosave task is scheduled."""
        return self._autosave_task is not None and not self._autosave_task.done()

    async def get_or_load(self) -> VectorStore:
        """
        Return the active store, loading or creating it if needed.

        Returns:
            The active VectorStore

        Raises:
            ProviderError: If a new store is needed and the dimension probe fails
        """
        store = self.cell.get()
        if store is not None:
            return store

        async with self._load_lock:
            store = self.cell.get()
            if store is not None:
                return store

            store, file_missing = await self._restore()
            if store is None:
                dim = await self.dimension.resolve(self.provider)
                store = VectorStore.create(dim)
                logger.info(f"Created new empty store (dimension={dim})")

            self.cell.swap(store)
            self._start_autosave()

        if file_missing:
            await self.save()
        return store

    async def _restore(self) -> tuple[Optional[VectorStore], bool]:
        """Try to deserialize the store file. Returns (store, file_missing)."""
        try:
            data = await asyncio.to_thread(self.db_path.read_bytes)
        except FileNotFoundError:
            logger.info(f"No store file at {self.db_path}")
            return None, True
        except OSError as e:
            logger.warning(f"Could not read store file {self.db_path}: {e}")
            return None, False

        try:
            store = await asyncio.to_thread(VectorStore.deserialize, data)
        except CorruptStoreError as e:
            logger.warning(f"Store file {self.db_path} is corrupt, starting empty: {e}")
            return None, False

        logger.info(f"Loaded store from {self.db_path} ({store.count()} records)")
        return store, False

    async def force_reload(self) -> VectorStore:
        """Discard the active store and load it again from disk."""
        self.close()
        return await self.get_or_load()

    async def save(self) -> bool:
        """
        Persist the active store.

        Returns:
            True if the store was written, False if there was nothing to
            save, a save was already running, or the write failed
        """
        if self._save_lock.locked():
            logger.warning("Save already in progress, dropping request")
            return False

        store = self.cell.get()
        if store is None:
            logger.debug("No active store to save")
            return False

        try:
            await self.save_store(store)
            return True
        except OSError as e:
            logger.error(f"Failed to save store to {self.db_path}: {e}")
            return False

    async def save_store(self, store: VectorStore) -> None:
        """
        Write a store to the persisted path, replacing any previous file.

        Unlike save(), this waits for a save already in progress instead of
        being dropped, so the store written last is the one passed here.

        Raises:
            OSError: If the file cannot be written
        """
        async with self._save_lock:
            write = asyncio.ensure_future(asyncio.to_thread(self._serialize_and_write, store))
            try:
                size = await asyncio.shield(write)
            except asyncio.CancelledError:
                # The worker thread cannot be stopped; keep the lock until its write lands
                await asyncio.wait([write])
                if write.exception() is not None:
                    logger.error(f"Interrupted save to {self.db_path} failed: {write.exception()}")
                raise
        logger.info(f"Saved store to {self.db_path} ({store.count()} records, {size} bytes)")

    def _serialize_and_write(self, store: VectorStore) -> int:
        data = store.serialize()
        _write_atomic(self.db_path, data)
        return len(data)

    def close(self) -> None:
        """Stop autosave and clear the active store without saving."""
        self._stop_autosave()
        self.cell.swap(None)

    def _start_autosave(self) -> None:
        if self.autosave_running or self.save_interval_minutes <= 0:
            return
        self._autosave_task = asyncio.create_task(self._autosave_loop())
        logger.debug(f"Autosave every {self.save_interval_minutes} minutes")

    def _stop_autosave(self) -> None:
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            self._autosave_task = None

    async def _autosave_loop(self) -> None:
        interval = self.save_interval_minutes * 60
        while True:
            await self._sleep(interval)
            if await self.save():
                logger.debug("Autosave complete")
