"""
Data models for vaultd.

Defines the Pydantic models for chunk records, search hits, query results
and indexing run summaries, plus the metadata encode/decode helpers used at
the store boundary.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ChunkRecord(BaseModel):
    """
    A single persisted chunk.

    Metadata is stored as an opaque JSON string so the store schema never
    depends on the shape of a note's front-matter.
    """
    text: str = Field(description="The chunk text")
    embedding: list[float] = Field(description="Embedding vector from the provider")
    metadata: str = Field(default="{}", description="JSON-encoded front-matter of the source note")
    source_path: str = Field(description="Vault-relative path of the source note")


class SearchHit(BaseModel):
    """A record returned by the vector store with its similarity score."""
    record: ChunkRecord
    score: float = Field(description="Similarity score (0-1)", ge=0, le=1)


class QueryResult(BaseModel):
    """A formatted search result handed to tool callers."""
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_path: str
    score: float = Field(ge=0, le=1)

    def __str__(self) -> str:
        """Format result for display."""
        return f"{self.source_path} ({self.score:.3f})\n{self.text[:100]}..."


class DocumentRef(BaseModel):
    """A document listed by a document source."""
    path: str = Field(description="Vault-relative POSIX path")
    extension: str = Field(description="Lowercase extension without the leading dot")


class IndexState(str, Enum):
    """States of the indexing pipeline."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchError(BaseModel):
    """An embedding batch that was skipped during a reindex."""
    batch_index: int
    start: int
    size: int
    message: str


class IndexRunSummary(BaseModel):
    """Outcome of one reindex run."""
    state: IndexState = IndexState.COMPLETED
    documents: int = 0
    documents_failed: int = 0
    total_chunks: int = 0
    succeeded: int = 0
    skipped: int = 0
    errors: list[BatchError] = Field(default_factory=list)
    saved: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def __str__(self) -> str:
        """Format summary for display."""
        lines = [
            f"State: {self.state.value}",
            f"Documents: {self.documents} ({self.documents_failed} failed)",
            f"Chunks: {self.succeeded}/{self.total_chunks} indexed, {self.skipped} skipped",
            f"Saved: {'yes' if self.saved else 'no'}",
            f"Duration: {self.duration_seconds:.1f}s",
        ]
        if self.error:
            lines.append(f"Error: {self.error}")
        return "\n".join(lines)


def encode_metadata(metadata: Optional[dict[str, Any]]) -> str:
    """
    Serialize note metadata for storage.

    Values JSON cannot represent natively (dates from YAML front-matter,
    for instance) are stored as strings.
    """
    return json.dumps(metadata or {}, default=str, ensure_ascii=False)


def decode_metadata(raw: str) -> dict[str, Any]:
    """Decode stored metadata, returning an empty dict for unreadable blobs."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to decode chunk metadata: {e}")
        return {}
    return value if isinstance(value, dict) else {"value": value}
