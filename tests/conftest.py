"""
Pytest fixtures for vaultd tests.

Provides reusable test fixtures for temporary vaults, sample notes, a
deterministic embedding provider, a manual autosave clock and test data.
"""

import asyncio
import hashlib
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Optional

import pytest

from vaultd import persistence
from vaultd.config import Config
from vaultd.embeddings import EmbeddingProvider
from vaultd.errors import ProviderError
from vaultd.models import ChunkRecord
from vaultd.store import VectorStore

FAKE_DIMENSION = 8


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic embedding provider.

    Vectors come from `vectors` when the text is listed there, otherwise from
    a hash of the text. Every call is recorded; a batch containing `fail_on`
    raises ProviderError.
    """

    def __init__(
        self,
        dimension: int = FAKE_DIMENSION,
        model_name: str = "fake-model",
        vectors: Optional[dict[str, list[float]]] = None,
        fail_on: Optional[str] = None,
    ):
        self.dimension = dimension
        self.model_name = model_name
        self.vectors = vectors or {}
        self.fail_on = fail_on
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i] / 255.0) - 0.5 for i in range(self.dimension)]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_on and any(self.fail_on in text for text in texts):
            raise ProviderError(f"simulated failure for batch containing {self.fail_on!r}")
        return [self.vector_for(text) for text in texts]

    @property
    def batch_calls(self) -> list[list[str]]:
        """Calls excluding the dimension probe."""
        return [call for call in self.calls if call != ["test"]]


class ManualClock:
    """
    Stand-in for asyncio.sleep that only returns when advanced.

    Each sleep() call parks on a future; advance() releases the oldest one
    and waits until the autosave loop is parked again.
    """

    def __init__(self):
        self.delays: list[float] = []
        self._pending: list[asyncio.Future] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        await future

    @property
    def waiting(self) -> int:
        return len(self._pending)

    async def wait_parked(self, timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._pending:
            if loop.time() > deadline:
                raise AssertionError("autosave loop never called sleep()")
            await asyncio.sleep(0.001)

    async def advance(self) -> None:
        await self.wait_parked()
        self._pending.pop(0).set_result(None)
        await self.wait_parked()


class BlockedWrites:
    """
    Stand-in for the atomic store write.

    The first write parks its worker thread until release(); later writes
    go straight through. Every written path is recorded.
    """

    def __init__(self, write):
        self._write = write
        self._gate = threading.Event()
        self.calls: list[Path] = []

    def __call__(self, path: Path, data: bytes) -> None:
        self.calls.append(path)
        if len(self.calls) == 1:
            self._gate.wait(timeout=5)
        self._write(path, data)

    def release(self) -> None:
        self._gate.set()

    async def wait_started(self, timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.calls:
            if loop.time() > deadline:
                raise AssertionError("no store write started")
            await asyncio.sleep(0.001)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    # Cleanup
    if temp_path.exists():
        shutil.rmtree(temp_path)


@pytest.fixture
def vault(temp_dir):
    """
    Create a small vault.

    Three eligible notes with 3, 2 and 2 paragraphs of exactly 18 characters,
    so with chunk_size=20 every paragraph becomes one chunk (7 in total),
    plus files the indexer must skip.
    """
    (temp_dir / ".vaultd").mkdir()

    (temp_dir / "a.md").write_text(
        "---\ntags: [alpha, test]\ncreated: 2024-01-15\n---\n"
        "note a para 1 text\n\nnote a para 2 text\n\nnote a para 3 text"
    )
    (temp_dir / "b.md").write_text("note b para 1 text\n\nnote b para 2 text")

    (temp_dir / "sub").mkdir()
    (temp_dir / "sub" / "c.md").write_text("note c para 1 text\n\nnote c para 2 text")

    # Skipped: hidden folder, non-markdown, image
    (temp_dir / ".obsidian").mkdir()
    (temp_dir / ".obsidian" / "workspace.md").write_text("hidden settings note")
    (temp_dir / "todo.txt").write_text("plain text file")
    (temp_dir / "image.png").write_bytes(b"\x89PNG\r\n")

    return temp_dir


@pytest.fixture
def config(vault):
    """Configuration for the sample vault, sized for 7 chunks in batches of 2."""
    config = Config(vault_root=vault)
    config.set("indexer", "chunk_size", value=20)
    config.set("indexer", "chunk_overlap", value=0)
    config.set("indexer", "separators", value=["\n\n", "\n", " ", ""])
    config.set("embeddings", "batch_size", value=2)
    return config


@pytest.fixture
def fake_provider():
    """Deterministic embedding provider."""
    return FakeEmbeddingProvider()


@pytest.fixture
def manual_clock():
    """Manual clock for autosave tests."""
    return ManualClock()


@pytest.fixture
def sample_records():
    """Records with hand-picked 4-dimensional vectors."""
    return [
        ChunkRecord(text="apples and pears", embedding=[1.0, 0.0, 0.0, 0.0],
                    metadata='{"tags": ["fruit"]}', source_path="fruit.md"),
        ChunkRecord(text="carrots and leeks", embedding=[0.0, 1.0, 0.0, 0.0],
                    metadata="{}", source_path="veg.md"),
        ChunkRecord(text="apples in a pie", embedding=[0.8, 0.6, 0.0, 0.0],
                    metadata="{}", source_path="recipes/pie.md"),
    ]


@pytest.fixture
def vector_store(sample_records):
    """A 4-dimensional store holding the sample records."""
    store = VectorStore.create(4)
    store.insert_many(sample_records)
    return store


@pytest.fixture
def provider_factory():
    """Factory for FakeEmbeddingProvider instances with custom settings."""
    return FakeEmbeddingProvider


@pytest.fixture
def blocked_writes(monkeypatch):
    """Make the next store write block until released."""
    blocked = BlockedWrites(persistence._write_atomic)
    monkeypatch.setattr(persistence, "_write_atomic", blocked)
    yield blocked
    blocked.release()


@pytest.fixture
def seeded_store(config):
    """A one-record store already saved at the vault's store path."""
    store = VectorStore.create(FAKE_DIMENSION)
    store.insert_many([
        ChunkRecord(text="seed", embedding=[0.5] * FAKE_DIMENSION, source_path="seed.md")
    ])
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    config.db_path.write_bytes(store.serialize())
    return store
