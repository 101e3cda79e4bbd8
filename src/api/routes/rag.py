"""RAG document and query endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.api.deps import Orchestrator
from src.rag.errors import (
    ChunkingError,
    NotInitializedError,
    ProviderError,
    RAGError,
    SynthesisError,
    VectorStoreError,
)
from src.rag.models import (
    CONTENT_TYPES,
    MAX_DOCUMENT_CHARS,
    Document,
    DocumentMetadata,
    IngestionResult,
    QueryOptions,
    parse_timestamp,
)
from src.rag.orchestrator import MAX_QUERY_CHARS, MAX_TOP_K

router = APIRouter(prefix="/rag")


# ============================================
# Request/Response Models
# ============================================


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MetadataIn(CamelModel):
    """Document metadata supplied by the caller."""

    domain: str = Field(..., min_length=1, max_length=100)
    source: str = Field(..., min_length=1, max_length=500)
    content_type: str = Field("text", pattern=f"^({'|'.join(CONTENT_TYPES)})$")
    title: str | None = Field(None, max_length=500)
    author: str | None = Field(None, max_length=200)
    tags: list[str] = Field(default_factory=list, max_length=50)
    extra: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    def to_metadata(self) -> DocumentMetadata:
        created_at = parse_timestamp(self.created_at)
        return DocumentMetadata(
            domain=self.domain,
            source=self.source,
            content_type=self.content_type,
            title=self.title,
            author=self.author,
            tags=list(self.tags),
            extra=dict(self.extra),
            created_at=created_at.isoformat() if created_at else None,
        )


class DocumentIn(CamelModel):
    """Request to add a document."""

    id: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=MAX_DOCUMENT_CHARS)
    metadata: MetadataIn

    def to_document(self) -> Document:
        return Document(id=self.id, content=self.content, metadata=self.metadata.to_metadata())


class DocumentUpdateIn(CamelModel):
    """Request to replace a document's content."""

    content: str = Field(..., min_length=1, max_length=MAX_DOCUMENT_CHARS)
    metadata: MetadataIn


class BatchIn(CamelModel):
    """Request to add several documents."""

    documents: list[DocumentIn] = Field(..., min_length=1, max_length=50)


class QueryOptionsIn(CamelModel):
    """Omitted options fall back to the configured defaults."""

    top_k: int | None = Field(None, ge=1, le=MAX_TOP_K)
    min_score: float | None = Field(None, ge=0.0, le=1.0)


class QueryIn(CamelModel):
    """RAG query request."""

    query: str = Field(..., min_length=1, max_length=MAX_QUERY_CHARS)
    domain: str = Field(..., min_length=1, max_length=100)
    options: QueryOptionsIn | None = None


class IngestionOut(CamelModel):
    document_id: str
    status: str
    chunk_count: int = 0
    processing_time_ms: int = 0
    error_kind: str | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, result: IngestionResult) -> "IngestionOut":
        return cls(
            document_id=result.document_id,
            status=result.status,
            chunk_count=result.chunk_count,
            processing_time_ms=result.processing_time_ms,
            error_kind=result.error_kind,
            error=result.error,
        )


class BatchOut(CamelModel):
    total: int
    successful: int
    failed: int
    results: list[IngestionOut]


class SourceOut(CamelModel):
    chunk_id: str
    score: float
    text: str
    metadata: dict[str, Any]
    document_id: str
    chunk_index: int


class PlanOut(CamelModel):
    semantic_query: str
    filters: dict[str, Any]
    planning_confidence: float
    reasoning: str = ""
    degraded: bool = False


class NoticeOut(CamelModel):
    kind: str
    message: str


class QueryMetadataOut(CamelModel):
    original_query: str
    plan: PlanOut
    total_matches: int
    stage_timings: dict[str, int]
    notices: list[NoticeOut]


class QueryOut(CamelModel):
    """RAG query response."""

    answer: str
    sources: list[SourceOut]
    confidence: float
    processing_time_ms: int
    metadata: QueryMetadataOut


class StatusOut(CamelModel):
    is_ready: bool
    document_count: int
    vector_count: int
    namespaces: dict[str, int]
    vector_dimensions: int
    embedding_model: str


# ============================================
# Error mapping
# ============================================


def to_http_error(exc: Exception) -> HTTPException:
    """Map pipeline errors onto HTTP status codes."""
    if isinstance(exc, RAGError):
        detail = exc.to_dict()
    else:
        detail = {"kind": type(exc).__name__, "message": str(exc)}

    if isinstance(exc, (ChunkingError, ValueError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotInitializedError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, (ProviderError, VectorStoreError, SynthesisError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=detail)


# ============================================
# Document Endpoints
# ============================================


@router.post("/documents", response_model=IngestionOut, status_code=status.HTTP_201_CREATED)
async def add_document(body: DocumentIn, orchestrator: Orchestrator):
    """Chunk, embed and index a document."""
    try:
        result = await orchestrator.add_document(body.to_document())
    except (RAGError, ValueError) as e:
        raise to_http_error(e) from e
    return IngestionOut.from_result(result)


@router.put("/documents/{document_id}", response_model=IngestionOut)
async def update_document(document_id: str, body: DocumentUpdateIn, orchestrator: Orchestrator):
    """Replace a document's content and metadata."""
    try:
        result = await orchestrator.update_document(
            document_id, body.content, body.metadata.to_metadata()
        )
    except (RAGError, ValueError) as e:
        raise to_http_error(e) from e
    return IngestionOut.from_result(result)


@router.post("/documents/batch", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
async def batch_add_documents(body: BatchIn, response: Response, orchestrator: Orchestrator):
    """Add several documents; failures are reported per document."""
    try:
        result = await orchestrator.batch_add_documents([d.to_document() for d in body.documents])
    except (RAGError, ValueError) as e:
        raise to_http_error(e) from e

    if result.successful == 0:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return BatchOut(
        total=result.total,
        successful=result.successful,
        failed=result.failed,
        results=[IngestionOut.from_result(r) for r in result.results],
    )


@router.delete("/documents/{document_id}", response_model=IngestionOut)
async def remove_document(
    document_id: str,
    orchestrator: Orchestrator,
    domain: str = Query(..., min_length=1, description="Domain the document belongs to"),
):
    """Remove every chunk of a document."""
    try:
        result = await orchestrator.remove_document(document_id, domain)
    except (RAGError, ValueError) as e:
        raise to_http_error(e) from e
    return IngestionOut.from_result(result)


# ============================================
# Query / Status Endpoints
# ============================================


@router.post("/query", response_model=QueryOut)
async def query(body: QueryIn, orchestrator: Orchestrator):
    """Answer a question from one domain's documents."""
    options = None
    if body.options is not None:
        options = QueryOptions(top_k=body.options.top_k, min_score=body.options.min_score)

    try:
        result = await orchestrator.query(body.query, body.domain, options)
    except (RAGError, ValueError) as e:
        raise to_http_error(e) from e

    return QueryOut.model_validate(result.to_dict())


@router.get("/status", response_model=StatusOut)
async def get_status(orchestrator: Orchestrator):
    """Readiness and index statistics."""
    try:
        system_status = await orchestrator.get_status()
    except RAGError as e:
        raise to_http_error(e) from e
    return StatusOut(
        is_ready=system_status.is_ready,
        document_count=system_status.document_count,
        vector_count=system_status.vector_count,
        namespaces=system_status.namespaces,
        vector_dimensions=system_status.vector_dimensions,
        embedding_model=system_status.embedding_model,
    )
