"""
Base chunking strategy interface for vaultd.

Defines the abstract base class that all chunking strategies must implement.
"""

from abc import ABC, abstractmethod


class ChunkStrategy(ABC):
    """
    Abstract base class for chunking strategies.

    A strategy turns a document body into an ordered list of chunks, the
    unit of embedding and retrieval.
    """

    @abstractmethod
    def split_spans(self, text: str) -> list[tuple[int, int]]:
        """
        Split text into chunk boundaries.

        Args:
            text: The document body to chunk

        Returns:
            List of (start, end) character offsets into text, in order
        """
        pass

    def split_text(self, text: str) -> list[str]:
        """
        Split text into chunks.

        Args:
            text: The document body to chunk

        Returns:
            List of chunk strings, in document order
        """
        return [text[start:end] for start, end in self.split_spans(text)]
