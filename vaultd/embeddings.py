"""
Embedding providers for vaultd.

Wraps an OpenAI-compatible embeddings endpoint (or a local
sentence-transformers model) behind a single async interface, and tracks the
process-wide embedding dimension.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import openai
from openai import AsyncOpenAI

from .errors import DimensionMismatchError, ProviderError

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

    from .config import Config

logger = logging.getLogger(__name__)

PROBE_TEXT = "test"


class EmbeddingProvider(ABC):
    """
    Text to vector adapter.

    Implementations return one vector per input text, in input order, and
    raise ProviderError instead of returning partial results. No retries are
    performed here; callers decide their own policy.
    """

    model_name: str

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            List of embedding vectors, same order as texts

        Raises:
            ProviderError: If the provider call fails or returns the wrong shape
        """
        pass


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embedding provider for any OpenAI-compatible /embeddings endpoint."""

    def __init__(
        self,
        model: str = "text-embedding-ada-002",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the provider.

        Args:
            model: Embedding model identifier
            api_key: API key for the provider
            base_url: Base URL of the API (defaults to api.openai.com)
            timeout: Request timeout in seconds
        """
        self.model_name = model
        self.base_url = base_url
        # max_retries=0: retry policy belongs to callers.
        # Keyless local endpoints still need a non-empty key for the SDK.
        self.client = AsyncOpenAI(
            api_key=api_key or "no-api-key",
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self.client.embeddings.create(
                model=self.model_name, input=texts, encoding_format="float"
            )
        except openai.OpenAIError as e:
            raise ProviderError(f"Embedding request failed: {e}") from e

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise ProviderError(
                f"Embedding provider returned {len(data)} vectors for {len(texts)} texts"
            )

        logger.debug(f"Embedded {len(texts)} texts with {self.model_name}")
        return [list(item.embedding) for item in data]

    def __repr__(self) -> str:
        """String representation."""
        return f"OpenAIEmbeddingProvider(model={self.model_name}, base_url={self.base_url})"


class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Embedding provider backed by a local sentence-transformers model.

    Features:
    - Lazy model loading (only loads when first needed)
    - Encoding runs on a worker thread so the event loop stays responsive
    - Normalized embeddings for cosine similarity
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", device: Optional[str] = None):
        """
        Initialize the provider.

        Args:
            model: Name of the sentence-transformers model to use
            device: Device to use ('cuda', 'cpu', or None for auto-detect)
        """
        self.model_name = model
        self.device = device
        self._model: Optional["SentenceTransformer"] = None
        self._model_lock = threading.Lock()

    @property
    def model(self) -> "SentenceTransformer":
        """Lazy-load the model on first access (thread-safe)."""
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info(f"Loading embedding model: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name, device=self.device)
                    logger.info(f"Model loaded on device: {self._model.device}")
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        embeddings = self.model.encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return [emb.tolist() for emb in embeddings]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            vectors = await asyncio.to_thread(self._encode, texts)
        except (RuntimeError, OSError, ValueError) as e:
            raise ProviderError(f"Local embedding failed: {e}") from e

        if len(vectors) != len(texts):
            raise ProviderError(
                f"Local model returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    def __repr__(self) -> str:
        """String representation."""
        loaded = "loaded" if self._model is not None else "not loaded"
        return f"LocalEmbeddingProvider(model={self.model_name}, {loaded})"


class EmbeddingDimension:
    """
    Process-wide embedding dimension, probed once.

    The dimension is remembered together with the model that produced it.
    Resolving against a different model raises instead of reusing a stale
    value; reset() must be called explicitly when the model changes.
    """

    def __init__(self):
        self._value: Optional[int] = None
        self._model_name: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def value(self) -> Optional[int]:
        """The cached dimension, or None if not probed yet."""
        return self._value

    @property
    def model_name(self) -> Optional[str]:
        """Model the cached dimension was probed with."""
        return self._model_name

    async def resolve(self, provider: EmbeddingProvider) -> int:
        """
        Return the embedding dimension, probing the provider on first use.

        Args:
            provider: Provider to probe

        Returns:
            Embedding dimension

        Raises:
            ProviderError: If the probe fails or returns no vector
            DimensionMismatchError: If the cached dimension belongs to another model
        """
        async with self._lock:
            if self._value is not None:
                if provider.model_name != self._model_name:
                    raise DimensionMismatchError(
                        f"Embedding dimension {self._value} was probed with model "
                        f"'{self._model_name}', but the provider now uses "
                        f"'{provider.model_name}'. Reset the dimension before re-indexing."
                    )
                return self._value

            logger.info(f"Probing embedding dimension with model {provider.model_name}")
            vectors = await provider.embed([PROBE_TEXT])
            if not vectors or not vectors[0]:
                raise ProviderError("Failed to get probe embedding to determine dimension")

            self._value = len(vectors[0])
            self._model_name = provider.model_name
            logger.info(f"Embedding dimension: {self._value}")
            return self._value

    def reset(self) -> None:
        """Forget the cached dimension."""
        if self._value is not None:
            logger.info(f"Resetting embedding dimension (was {self._value})")
        self._value = None
        self._model_name = None

    def __repr__(self) -> str:
        """String representation."""
        return f"EmbeddingDimension(value={self._value}, model={self._model_name})"


def create_embedding_provider(config: "Config") -> EmbeddingProvider:
    """
    Build the embedding provider selected in the configuration.

    Args:
        config: vaultd configuration

    Returns:
        EmbeddingProvider instance

    Raises:
        ValueError: If the provider name is unknown
    """
    provider = config.get("embeddings", "provider", default="openai")
    model = config.get("embeddings", "model", default="text-embedding-ada-002")

    if provider == "openai":
        return OpenAIEmbeddingProvider(
            model=model,
            api_key=config.get("embeddings", "api_key"),
            base_url=config.get("embeddings", "base_url"),
            timeout=config.get("embeddings", "timeout", default=30.0),
        )
    if provider == "local":
        return LocalEmbeddingProvider(
            model=model,
            device=config.get("embeddings", "device"),
        )
    raise ValueError(f"Unknown embedding provider: {provider}. Use 'openai' or 'local'")
