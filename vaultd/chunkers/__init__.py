"""
Chunking strategies for vaultd.

- RecursiveTextChunker: separator-driven chunking with overlap for notes
"""

from .base import ChunkStrategy
from .recursive import DEFAULT_SEPARATORS, RecursiveTextChunker

__all__ = [
    "ChunkStrategy",
    "RecursiveTextChunker",
    "DEFAULT_SEPARATORS",
]
