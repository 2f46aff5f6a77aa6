"""
Recursive character chunking strategy.

Splits text on an ordered list of separators (paragraph, line, sentence,
word) and merges the resulting pieces into overlapping chunks.
"""

import logging
from collections import deque
from typing import Iterator, Optional, Sequence

from .base import ChunkStrategy

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS = ["\n\n", "\n", ".", "?", "!", " ", ""]


class RecursiveTextChunker(ChunkStrategy):
    """
    Separator-driven chunking strategy for notes and plain text.

    Features:
    - Tries separators in priority order, finer ones only where needed
    - Keeps each separator attached to the piece before it, so every chunk
      is an exact slice of the input
    - Force-splits pieces that no separator can bring under chunk_size
    - Overlaps consecutive chunks by at most chunk_overlap characters
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Optional[Sequence[str]] = None,
    ):
        """
        Initialize the chunker.

        Args:
            chunk_size: Maximum chunk length in characters
            chunk_overlap: Maximum number of characters shared by consecutive chunks
            separators: Separators in priority order ("" means character level)

        Raises:
            ValueError: If the size constraints are inconsistent
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be non-negative, got {chunk_overlap}")
        if chunk_overlap > chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must not exceed chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators) if separators is not None else list(DEFAULT_SEPARATORS)

    def split_spans(self, text: str) -> list[tuple[int, int]]:
        """
        Split text into overlapping chunk boundaries.

        Args:
            text: The text to chunk

        Returns:
            List of (start, end) offsets; empty for empty input
        """
        if not text:
            return []

        pieces = self._split_pieces(text, 0, len(text), self.separators)
        spans = self._merge(pieces)
        logger.debug(f"Split {len(text)} characters into {len(spans)} chunks")
        return spans

    def _split_pieces(
        self,
        text: str,
        start: int,
        end: int,
        separators: Sequence[str],
    ) -> list[tuple[int, int]]:
        """Break text[start:end] into contiguous pieces no longer than chunk_size."""
        if end - start <= self.chunk_size:
            return [(start, end)]

        for i, separator in enumerate(separators):
            if separator == "":
                break
            if text.find(separator, start, end) == -1:
                continue

            pieces = []
            for piece_start, piece_end in self._split_on(text, start, end, separator):
                pieces.extend(
                    self._split_pieces(text, piece_start, piece_end, separators[i + 1:])
                )
            return pieces

        return self._force_split(start, end)

    @staticmethod
    def _split_on(text: str, start: int, end: int, separator: str) -> Iterator[tuple[int, int]]:
        """Yield pieces of text[start:end] ending just after each separator occurrence."""
        cursor = start
        while True:
            index = text.find(separator, cursor, end)
            if index == -1:
                break
            piece_end = index + len(separator)
            yield cursor, piece_end
            cursor = piece_end
        if cursor < end:
            yield cursor, end

    def _force_split(self, start: int, end: int) -> list[tuple[int, int]]:
        """Cut a span into chunk_size windows."""
        return [
            (offset, min(offset + self.chunk_size, end))
            for offset in range(start, end, self.chunk_size)
        ]

    def _merge(self, pieces: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """
        Greedily merge contiguous pieces into chunks.

        When a chunk is emitted, the trailing pieces that fit within
        chunk_overlap (and leave room for the next piece) seed the next chunk.
        """
        chunks: list[tuple[int, int]] = []
        current: deque[tuple[int, int]] = deque()
        current_len = 0

        for piece in pieces:
            piece_len = piece[1] - piece[0]

            if current and current_len + piece_len > self.chunk_size:
                chunks.append((current[0][0], current[-1][1]))

                while current and (
                    current_len > self.chunk_overlap
                    or current_len + piece_len > self.chunk_size
                ):
                    dropped = current.popleft()
                    current_len -= dropped[1] - dropped[0]

            current.append(piece)
            current_len += piece_len

        if current:
            chunks.append((current[0][0], current[-1][1]))

        return chunks

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"RecursiveTextChunker(chunk_size={self.chunk_size}, "
            f"chunk_overlap={self.chunk_overlap})"
        )
