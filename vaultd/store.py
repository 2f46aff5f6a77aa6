"""
Vector store for vaultd.

An in-memory index over chunk records with a fixed schema
{text, embedding: vector[D], metadata, source_path}. Supports bulk insert,
counting, vector/keyword/hybrid search and a self-describing single-file
snapshot in Arrow IPC format.
"""

import logging
import math
import re
from collections import Counter
from typing import Iterator, Optional, Sequence

import numpy as np
import pyarrow as pa

from .errors import CorruptStoreError, DimensionMismatchError
from .models import ChunkRecord, SearchHit

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1"
_META_FORMAT = b"vaultd.format"
_META_DIMENSION = b"vaultd.dimension"
_COLUMNS = ("text", "embedding", "metadata", "source_path")

SEARCH_MODES = ("vector", "fulltext", "hybrid")

# Absorbs float error so an identical vector still matches at similarity 1.0
SIMILARITY_TOLERANCE = 1e-6

# BM25 parameters
BM25_K1 = 1.2
BM25_B = 0.75

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens used for keyword scoring."""
    return _TOKEN_RE.findall(text.lower())


def _schema(dimension: int) -> pa.Schema:
    return pa.schema(
        [
            pa.field("text", pa.string(), nullable=False),
            pa.field("embedding", pa.list_(pa.float32(), dimension), nullable=False),
            pa.field("metadata", pa.string(), nullable=False),
            pa.field("source_path", pa.string(), nullable=False),
        ],
        metadata={
            _META_FORMAT: FORMAT_VERSION.encode(),
            _META_DIMENSION: str(dimension).encode(),
        },
    )


class VectorStore:
    """
    Schema-typed in-memory vector store.

    Features:
    - Dimension fixed at creation time and enforced on every insert
    - Cosine similarity search with stable tie-breaking by insertion order
    - BM25 keyword search and a weighted hybrid of both
    - serialize()/deserialize() round-trip through a single Arrow IPC blob
    """

    def __init__(self, dimension: int):
        """
        Initialize an empty store.

        Args:
            dimension: Length of every embedding vector

        Raises:
            ValueError: If dimension is not positive
        """
        if dimension <= 0:
            raise ValueError(f"Store dimension must be positive, got {dimension}")

        self._dimension = dimension
        self._texts: list[str] = []
        self._metadata: list[str] = []
        self._paths: list[str] = []
        self._blocks: list[np.ndarray] = []
        self._term_counts: list[Counter] = []

        # Caches rebuilt lazily after inserts
        self._matrix: Optional[np.ndarray] = None
        self._normalized: Optional[np.ndarray] = None
        self._doc_lengths: Optional[np.ndarray] = None

    @classmethod
    def create(cls, dimension: int) -> "VectorStore":
        """Allocate an empty store typed to the given dimension."""
        store = cls(dimension)
        logger.debug(f"Created empty vector store (dimension={dimension})")
        return store

    @property
    def dimension(self) -> int:
        """Embedding dimension of this store."""
        return self._dimension

    def count(self) -> int:
        """Total number of records."""
        return len(self._texts)

    def __len__(self) -> int:
        return self.count()

    def insert_many(self, records: Sequence[ChunkRecord]) -> int:
        """
        Append records to the store.

        The whole call is validated before anything is appended, so a failed
        call leaves the store as it was.

        Args:
            records: Records to insert

        Returns:
            Number of records inserted

        Raises:
            DimensionMismatchError: If any embedding has the wrong length
        """
        if not records:
            return 0

        for i, record in enumerate(records):
            if len(record.embedding) != self._dimension:
                raise DimensionMismatchError(
                    f"Record {i} from {record.source_path} has embedding length "
                    f"{len(record.embedding)}, store dimension is {self._dimension}"
                )

        block = np.asarray([record.embedding for record in records], dtype=np.float32)
        self._append(
            texts=[record.text for record in records],
            metadata=[record.metadata for record in records],
            paths=[record.source_path for record in records],
            vectors=block,
        )
        logger.debug(f"Inserted {len(records)} records (total {self.count()})")
        return len(records)

    def _append(
        self,
        texts: list[str],
        metadata: list[str],
        paths: list[str],
        vectors: np.ndarray,
    ) -> None:
        self._texts.extend(texts)
        self._metadata.extend(metadata)
        self._paths.extend(paths)
        self._term_counts.extend(Counter(tokenize(text)) for text in texts)
        if len(vectors):
            self._blocks.append(vectors)
        self._invalidate()

    def _invalidate(self) -> None:
        self._matrix = None
        self._normalized = None
        self._doc_lengths = None

    @property
    def matrix(self) -> np.ndarray:
        """All embeddings as an (n, dimension) float32 array."""
        if self._matrix is None:
            if self._blocks:
                self._matrix = np.vstack(self._blocks)
                self._blocks = [self._matrix]
            else:
                self._matrix = np.empty((0, self._dimension), dtype=np.float32)
        return self._matrix

    def _normalized_matrix(self) -> np.ndarray:
        if self._normalized is None:
            matrix = self.matrix.astype(np.float64)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._normalized = matrix / norms
        return self._normalized

    def record(self, index: int) -> ChunkRecord:
        """Get the record at an insertion index."""
        return ChunkRecord(
            text=self._texts[index],
            embedding=self.matrix[index].tolist(),
            metadata=self._metadata[index],
            source_path=self._paths[index],
        )

    def source_paths(self) -> set[str]:
        """Distinct source paths present in the store."""
        return set(self._paths)

    def records(self) -> Iterator[ChunkRecord]:
        """Iterate over all records in insertion order."""
        for index in range(self.count()):
            yield self.record(index)

    def search(
        self,
        query_vector: Optional[Sequence[float]] = None,
        limit: int = 10,
        min_similarity: float = 0.0,
        *,
        term: Optional[str] = None,
        mode: str = "vector",
        fts_weight: float = 0.5,
    ) -> list[SearchHit]:
        """
        Search for records similar to a query.

        Args:
            query_vector: Query embedding (vector and hybrid modes)
            limit: Maximum number of results
            min_similarity: Minimum score (0-1) for a record to be returned
            term: Keyword query (fulltext and hybrid modes)
            mode: "vector", "fulltext" or "hybrid"
            fts_weight: Weight of the keyword score in hybrid mode (0-1)

        Returns:
            Hits ordered by descending score, ties in insertion order

        Raises:
            ValueError: If arguments are out of range or missing for the mode
            DimensionMismatchError: If query_vector has the wrong length
        """
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if not 0.0 <= min_similarity <= 1.0:
            raise ValueError(f"min_similarity must be within [0, 1], got {min_similarity}")
        if mode not in SEARCH_MODES:
            raise ValueError(f"Invalid search mode: {mode}. Use 'vector', 'fulltext', or 'hybrid'")
        if mode in ("vector", "hybrid") and query_vector is None:
            raise ValueError(f"query_vector required for {mode} mode")
        if mode in ("fulltext", "hybrid") and not term:
            raise ValueError(f"term required for {mode} mode")
        if not 0.0 <= fts_weight <= 1.0:
            raise ValueError(f"fts_weight must be within [0, 1], got {fts_weight}")

        if query_vector is not None:
            query = self._check_query(query_vector)

        if self.count() == 0:
            return []

        if mode == "vector":
            scores = self._cosine_scores(query)
            eligible = np.ones(len(scores), dtype=bool)
        elif mode == "fulltext":
            scores = self._keyword_scores(term)
            eligible = scores > 0
        else:
            scores = (1.0 - fts_weight) * self._cosine_scores(query) + fts_weight * self._keyword_scores(term)
            eligible = np.ones(len(scores), dtype=bool)

        eligible &= scores >= min_similarity - SIMILARITY_TOLERANCE
        candidates = np.flatnonzero(eligible)
        order = candidates[np.argsort(-scores[candidates], kind="stable")][:limit]

        hits = [
            SearchHit(record=self.record(int(i)), score=float(np.clip(scores[i], 0.0, 1.0)))
            for i in order
        ]
        logger.debug(f"Search (mode={mode}) returned {len(hits)} of {self.count()} records")
        return hits

    def _check_query(self, query_vector: Sequence[float]) -> np.ndarray:
        query = np.asarray(query_vector, dtype=np.float64)
        if query.shape != (self._dimension,):
            raise DimensionMismatchError(
                f"Query vector has length {query.size}, store dimension is {self._dimension}"
            )
        return query

    def _cosine_scores(self, query: np.ndarray) -> np.ndarray:
        """Cosine similarity of every record to the query, clipped to [0, 1]."""
        norm = np.linalg.norm(query)
        if norm == 0:
            return np.zeros(self.count())
        scores = self._normalized_matrix() @ (query / norm)
        return np.clip(scores, 0.0, 1.0)

    def _keyword_scores(self, term: str) -> np.ndarray:
        """BM25 score of every record for the term, normalized by the best score."""
        scores = np.zeros(self.count())
        query_tokens = set(tokenize(term))
        if not query_tokens:
            return scores

        if self._doc_lengths is None:
            self._doc_lengths = np.array(
                [sum(counts.values()) for counts in self._term_counts], dtype=np.float64
            )
        doc_lengths = self._doc_lengths
        avg_length = doc_lengths.mean() or 1.0
        total = self.count()

        for token in query_tokens:
            tf = np.array([counts.get(token, 0) for counts in self._term_counts], dtype=np.float64)
            df = np.count_nonzero(tf)
            if df == 0:
                continue
            idf = math.log(1.0 + (total - df + 0.5) / (df + 0.5))
            scores += idf * tf * (BM25_K1 + 1) / (
                tf + BM25_K1 * (1 - BM25_B + BM25_B * doc_lengths / avg_length)
            )

        best = scores.max()
        return scores / best if best > 0 else scores

    def serialize(self) -> bytes:
        """
        Snapshot the whole store.

        Returns:
            Arrow IPC file bytes; the schema metadata carries the format
            version and dimension
        """
        schema = _schema(self._dimension)
        flat = pa.array(self.matrix.reshape(-1), type=pa.float32())
        table = pa.Table.from_arrays(
            [
                pa.array(self._texts, type=pa.string()),
                pa.FixedSizeListArray.from_arrays(flat, self._dimension),
                pa.array(self._metadata, type=pa.string()),
                pa.array(self._paths, type=pa.string()),
            ],
            schema=schema,
        )

        sink = pa.BufferOutputStream()
        with pa.ipc.new_file(sink, schema) as writer:
            writer.write_table(table)
        return sink.getvalue().to_pybytes()

    @classmethod
    def deserialize(cls, data: bytes) -> "VectorStore":
        """
        Reconstruct a store from serialize() output.

        Args:
            data: Arrow IPC file bytes

        Returns:
            Restored VectorStore

        Raises:
            CorruptStoreError: If the data is not a valid snapshot
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise CorruptStoreError(f"Expected bytes, got {type(data).__name__}")

        try:
            reader = pa.ipc.open_file(pa.py_buffer(data))
            table = reader.read_all()
        except (pa.ArrowException, OSError, ValueError) as e:
            raise CorruptStoreError(f"Unreadable store data: {e}") from e

        metadata = table.schema.metadata or {}
        if metadata.get(_META_FORMAT) != FORMAT_VERSION.encode():
            raise CorruptStoreError(
                f"Unsupported store format: {metadata.get(_META_FORMAT)!r}"
            )
        try:
            dimension = int(metadata[_META_DIMENSION])
        except (KeyError, ValueError) as e:
            raise CorruptStoreError("Store dimension missing from snapshot") from e
        if dimension <= 0:
            raise CorruptStoreError(f"Invalid store dimension: {dimension}")

        missing = [name for name in _COLUMNS if name not in table.column_names]
        if missing:
            raise CorruptStoreError(f"Store snapshot is missing columns: {missing}")

        embedding_type = table.schema.field("embedding").type
        if not (pa.types.is_fixed_size_list(embedding_type) and embedding_type.list_size == dimension):
            raise CorruptStoreError(
                f"Embedding column type {embedding_type} does not match dimension {dimension}"
            )
        if any(table.column(name).null_count for name in _COLUMNS):
            raise CorruptStoreError("Store snapshot contains null values")

        store = cls(dimension)
        if table.num_rows:
            embeddings = table.column("embedding").combine_chunks()
            vectors = (
                embeddings.flatten()
                .to_numpy(zero_copy_only=False)
                .astype(np.float32)
                .reshape(-1, dimension)
            )
            store._append(
                texts=table.column("text").to_pylist(),
                metadata=table.column("metadata").to_pylist(),
                paths=table.column("source_path").to_pylist(),
                vectors=vectors,
            )

        logger.debug(f"Restored vector store with {store.count()} records (dimension={dimension})")
        return store

    def __repr__(self) -> str:
        """String representation."""
        return f"VectorStore(dimension={self._dimension}, records={self.count()})"
