"""
vaultd - Local semantic search daemon for a vault of Markdown notes.

This package provides:
- Recursive chunking of notes with YAML front-matter as metadata
- Embeddings through any OpenAI-compatible endpoint or sentence-transformers
- An in-memory vector store persisted as a single Arrow IPC file
- Full reindex built off to the side and swapped in atomically
- MCP tools for search, indexing and vault file operations
"""

__version__ = "0.1.0"

from .models import ChunkRecord, SearchHit, QueryResult, IndexRunSummary, IndexState
from .config import Config
from .embeddings import EmbeddingProvider, OpenAIEmbeddingProvider, LocalEmbeddingProvider, EmbeddingDimension
from .store import VectorStore
from .persistence import PersistenceManager, StoreCell
from .indexer import Indexer
from .query import QueryService
from .chunkers import ChunkStrategy, RecursiveTextChunker

__all__ = [
    # Models
    "ChunkRecord",
    "SearchHit",
    "QueryResult",
    "IndexRunSummary",
    "IndexState",
    # Core components
    "Config",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "LocalEmbeddingProvider",
    "EmbeddingDimension",
    "VectorStore",
    "PersistenceManager",
    "StoreCell",
    "Indexer",
    "QueryService",
    # Chunkers
    "ChunkStrategy",
    "RecursiveTextChunker",
]
