"""
Query service for vaultd.

Embeds a query and runs it against whatever store is active at the time
of the call.
"""

import logging

from .embeddings import EmbeddingProvider
from .errors import NotReadyError, ProviderError
from .models import QueryResult, decode_metadata
from .persistence import StoreCell

logger = logging.getLogger(__name__)

RESULT_SEPARATOR = "============"


class QueryService:
    """Similarity search over the active store."""

    def __init__(self, cell: StoreCell, provider: EmbeddingProvider):
        self.cell = cell
        self.provider = provider

    async def search(
        self,
        query: str,
        top_k: int,
        min_similarity: float,
        mode: str = "vector",
        fts_weight: float = 0.5,
    ) -> list[QueryResult]:
        """
        Search the active store.

        The store reference is captured before embedding the query, so a
        reindex that swaps the store meanwhile does not affect this call.

        Args:
            query: Natural-language query
            top_k: Maximum number of results
            min_similarity: Minimum score (0-1)
            mode: "vector", "fulltext" or "hybrid"
            fts_weight: Keyword weight for hybrid mode

        Returns:
            Results ordered by descending score

        Raises:
            ValueError: If the query is empty or arguments are out of range
            NotReadyError: If no store is active
            ProviderError: If embedding the query fails
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        store = self.cell.get()
        if store is None:
            raise NotReadyError()
        if store.count() == 0:
            return []

        query_vector = None
        if mode != "fulltext":
            vectors = await self.provider.embed([query])
            if len(vectors) != 1:
                raise ProviderError(f"Expected 1 query embedding, got {len(vectors)}")
            query_vector = vectors[0]

        hits = store.search(
            query_vector,
            limit=top_k,
            min_similarity=min_similarity,
            term=query,
            mode=mode,
            fts_weight=fts_weight,
        )

        results = [
            QueryResult(
                text=hit.record.text,
                metadata=decode_metadata(hit.record.metadata),
                source_path=hit.record.source_path,
                score=hit.score,
            )
            for hit in hits
        ]
        logger.info(f"Search for '{query}' (mode={mode}) returned {len(results)} results")
        return results


def format_results(results: list[QueryResult]) -> str:
    """Render results as numbered document blocks."""
    if not results:
        return "No results found."
    output = "".join(
        f"Document {i}\n{result.text or 'No content available'}\n{RESULT_SEPARATOR}\n"
        for i, result in enumerate(results, start=1)
    )
    return output.strip()
