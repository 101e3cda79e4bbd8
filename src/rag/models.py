"""Core data types shared across the RAG pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

CONTENT_TYPES = ("text", "post", "article", "summary", "note")
MAX_DOCUMENT_CHARS = 50000


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp into UTC; naive values are taken as UTC.

    Returns None for anything that is not a timestamp.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class DocumentMetadata:
    """Caller-supplied document metadata.

    `domain` doubles as the vector store namespace and is never changed after
    a document is added; moving a document requires remove + add.
    `created_at` and `updated_at` are ISO 8601 strings stamped on ingestion.
    """

    domain: str
    source: str
    content_type: str = "text"
    title: str | None = None
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the metadata stored alongside every chunk vector."""
        data = {
            **self.extra,
            "domain": self.domain,
            "source": self.source,
            "content_type": self.content_type,
            "tags": list(self.tags),
        }
        for key in ("title", "author", "created_at", "updated_at"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class Document:
    """A caller-owned text document."""

    id: str
    content: str
    metadata: DocumentMetadata

    @property
    def domain(self) -> str:
        return self.metadata.domain


@dataclass
class VectorRecord:
    """A chunk embedding as stored in the vector store."""

    id: str
    vector: list[float]
    namespace: str
    metadata: dict[str, Any]

    @staticmethod
    def make_id(document_id: str, chunk_index: int) -> str:
        return f"{document_id}_{chunk_index}"


@dataclass
class VectorMatch:
    """Raw similarity match returned by a vector store."""

    id: str
    score: float
    metadata: dict[str, Any]


@dataclass
class IndexStats:
    """Vector store statistics."""

    total_vector_count: int
    document_count: int
    dimension: int
    namespaces: dict[str, int] = field(default_factory=dict)


@dataclass
class QueryPlan:
    """Planner output: what to search for and how to filter."""

    semantic_query: str
    filters: dict[str, Any]
    planning_confidence: float
    reasoning: str = ""
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QueryOptions:
    """Per-query retrieval options; None falls back to configuration."""

    top_k: int | None = None
    min_score: float | None = None


@dataclass
class RetrievalMatch:
    """A chunk retrieved for a query."""

    chunk_id: str
    score: float
    text: str
    metadata: dict[str, Any]
    document_id: str
    chunk_index: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RAGResult:
    """End-to-end query result."""

    answer: str
    sources: list[RetrievalMatch]
    confidence: float
    processing_time_ms: int
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "metadata": self.metadata,
        }


@dataclass
class IngestionResult:
    """Outcome of a single document lifecycle operation."""

    document_id: str
    status: str  # added, updated, removed, failed
    chunk_count: int = 0
    processing_time_ms: int = 0
    error_kind: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != "failed"


@dataclass
class BatchIngestionResult:
    """Per-document outcomes of a batch ingestion."""

    results: list[IngestionResult]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful


@dataclass
class SystemStatus:
    """Readiness and index statistics."""

    is_ready: bool
    document_count: int
    vector_count: int
    namespaces: dict[str, int]
    vector_dimensions: int
    embedding_model: str
