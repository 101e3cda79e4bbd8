"""RAG orchestrator.

Composes chunking, embedding, storage, planning, retrieval and synthesis into
the document lifecycle operations and the end-to-end query operation.

Ingestion pipeline:
1. Split document into chunks
2. Generate embeddings (batched)
3. Upsert vectors into the document's domain namespace

Query pipeline:
1. Plan (semantic query + filters; degrades to the raw query)
2. Retrieve (may be empty; never short-circuits)
3. Synthesize answer and confidence
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from redis.exceptions import RedisError

from src.core.config import Settings
from src.core.rate_limiting import RateLimiter, RateLimitExceeded, build_rate_limiter
from src.observability.metrics import (
    ACTIVE_QUERIES,
    CHUNKS_UPSERTED,
    DOCUMENTS_INGESTED,
    QUERIES_TOTAL,
    STAGE_FAILURES,
    STAGE_NOTICES,
    stage_timer,
)
from src.rag.chunking import Chunk, Chunker, ChunkingOptions
from src.rag.completion import build_completion_provider
from src.rag.embedder import EmbeddingProvider, build_embedding_provider, create_openai_client
from src.rag.errors import NotInitializedError, PlanningDegraded, RAGError, RetrievalEmpty
from src.rag.models import (
    BatchIngestionResult,
    Document,
    DocumentMetadata,
    IngestionResult,
    QueryOptions,
    RAGResult,
    SystemStatus,
    VectorRecord,
)
from src.rag.planner import QueryPlanner
from src.rag.retriever import Retriever
from src.rag.synthesizer import ResponseSynthesizer
from src.rag.vector_store import VectorStore, build_vector_store

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = 2000
MAX_TOP_K = 20


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class RAGOrchestrator:
    """Runs document lifecycle and query operations over injected components."""

    def __init__(
        self,
        chunker: Chunker,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        planner: QueryPlanner,
        retriever: Retriever,
        synthesizer: ResponseSynthesizer,
        ingest_limiter: RateLimiter,
        ingest_batch_size: int = 5,
        default_top_k: int = 5,
        default_min_score: float = 0.7,
        now: Callable[[], datetime] | None = None,
    ):
        if not 3 <= ingest_batch_size <= 20:
            raise ValueError("ingest_batch_size must be between 3 and 20")
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.planner = planner
        self.retriever = retriever
        self.synthesizer = synthesizer
        self.ingest_limiter = ingest_limiter
        self.ingest_batch_size = ingest_batch_size
        self.default_top_k = default_top_k
        self.default_min_score = default_min_score
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Prepare the vector store; must be called before any operation."""
        if self._initialized:
            return
        logger.info("[Orchestrator] Initializing")
        await self.vector_store.initialize()
        self._initialized = True
        logger.info("[Orchestrator] Ready")

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        self._initialized = False
        await self.vector_store.close()
        logger.info("[Orchestrator] Shut down")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("RAG system not initialized")

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    def _build_records(self, document: Document, chunks: list[Chunk], vectors: list[list[float]]):
        base_metadata = document.metadata.to_dict()
        return [
            VectorRecord(
                id=VectorRecord.make_id(document.id, chunk.index),
                vector=vector,
                namespace=document.domain,
                metadata={
                    **base_metadata,
                    "text": chunk.text,
                    "document_id": document.id,
                    "chunk_index": chunk.index,
                    "total_chunks": len(chunks),
                    "start_char": chunk.start_char,
                    "end_char": chunk.end_char,
                },
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]

    async def _prepare(self, document: Document) -> list[VectorRecord]:
        """Chunk and embed a document into records ready to store."""
        with stage_timer("chunking"):
            chunks = self.chunker.chunk_document(document)
        logger.debug(f"[Orchestrator] {document.id}: {len(chunks)} chunks")

        with stage_timer("embedding"):
            vectors = await self.embedder.embed_batch([c.text for c in chunks])

        return self._build_records(document, chunks, vectors)

    async def _store(self, namespace: str, records: list[VectorRecord]) -> None:
        with stage_timer("upsert"):
            upserted = await self.vector_store.upsert(namespace, records)
        CHUNKS_UPSERTED.labels(namespace).inc(upserted)

    def _timestamp(self) -> str:
        return self._now().isoformat()

    async def add_document(self, document: Document) -> IngestionResult:
        """Chunk, embed and store a document in its domain namespace.

        Stamps `created_at` (unless supplied) and `updated_at` on its metadata.

        Raises:
            ChunkingError, ProviderError, VectorStoreError
        """
        self._require_initialized()
        start = time.perf_counter()
        logger.info(f"[Orchestrator] Adding document {document.id} to '{document.domain}'")

        now = self._timestamp()
        document = replace(
            document,
            metadata=replace(
                document.metadata, created_at=document.metadata.created_at or now, updated_at=now
            ),
        )
        try:
            records = await self._prepare(document)
            await self._store(document.domain, records)
        except RAGError as e:
            DOCUMENTS_INGESTED.labels("failed").inc()
            STAGE_FAILURES.labels("ingestion", e.kind).inc()
            logger.error(f"[Orchestrator] Failed to add {document.id}: {e.kind}: {e.message}")
            raise

        DOCUMENTS_INGESTED.labels("added").inc()
        result = IngestionResult(
            document_id=document.id,
            status="added",
            chunk_count=len(records),
            processing_time_ms=_elapsed_ms(start),
        )
        logger.info(
            f"[Orchestrator] Added {document.id}: {len(records)} chunks in {result.processing_time_ms}ms"
        )
        return result

    async def update_document(
        self, document_id: str, new_content: str, metadata: DocumentMetadata
    ) -> IngestionResult:
        """Replace a document's vectors with those of its new content.

        The new content is chunked and embedded before anything stored is
        touched, so a failing update leaves the indexed document intact. The
        original `created_at` is kept and `updated_at` refreshed.
        """
        self._require_initialized()
        start = time.perf_counter()
        selector = {"document_id": document_id}

        try:
            previous = await self.vector_store.fetch_metadata(metadata.domain, selector) or {}
            now = self._timestamp()
            metadata = replace(
                metadata,
                created_at=previous.get("created_at") or metadata.created_at or now,
                updated_at=now,
            )
            document = Document(id=document_id, content=new_content, metadata=metadata)
            records = await self._prepare(document)

            removed = await self.vector_store.delete(metadata.domain, filter=selector)
            await self._store(metadata.domain, records)
        except RAGError as e:
            DOCUMENTS_INGESTED.labels("failed").inc()
            STAGE_FAILURES.labels("ingestion", e.kind).inc()
            logger.error(f"[Orchestrator] Failed to update {document_id}: {e.kind}: {e.message}")
            raise

        DOCUMENTS_INGESTED.labels("updated").inc()
        logger.info(
            f"[Orchestrator] Updated {document_id}: replaced {removed} chunks with {len(records)}"
        )
        return IngestionResult(
            document_id=document_id,
            status="updated",
            chunk_count=len(records),
            processing_time_ms=_elapsed_ms(start),
        )

    async def remove_document(self, document_id: str, domain: str) -> IngestionResult:
        """Delete every vector of a document from its domain namespace."""
        self._require_initialized()
        start = time.perf_counter()

        removed = await self.vector_store.delete(domain, filter={"document_id": document_id})
        DOCUMENTS_INGESTED.labels("removed").inc()
        logger.info(f"[Orchestrator] Removed {document_id} from '{domain}' ({removed} chunks)")
        return IngestionResult(
            document_id=document_id,
            status="removed",
            chunk_count=removed,
            processing_time_ms=_elapsed_ms(start),
        )

    async def _add_isolated(self, document: Document) -> IngestionResult:
        """add_document that reports failures instead of raising them."""
        start = time.perf_counter()
        try:
            return await self.add_document(document)
        except RAGError as e:
            return IngestionResult(
                document_id=document.id,
                status="failed",
                processing_time_ms=_elapsed_ms(start),
                error_kind=e.kind,
                error=e.message,
            )
        except Exception as e:
            logger.exception(f"[Orchestrator] Unexpected error adding {document.id}")
            DOCUMENTS_INGESTED.labels("failed").inc()
            return IngestionResult(
                document_id=document.id,
                status="failed",
                processing_time_ms=_elapsed_ms(start),
                error_kind=type(e).__name__,
                error=str(e),
            )

    async def batch_add_documents(self, documents: list[Document]) -> BatchIngestionResult:
        """Add documents in fixed-size concurrent batches.

        Each batch waits on the ingest rate limiter before starting. A failing
        document is reported in its result and never affects the others; a
        limiter failure fails only the documents of its batch.
        """
        self._require_initialized()
        logger.info(
            f"[Orchestrator] Batch ingesting {len(documents)} documents "
            f"(batch size {self.ingest_batch_size})"
        )

        results: list[IngestionResult] = []
        for batch_start in range(0, len(documents), self.ingest_batch_size):
            batch = documents[batch_start : batch_start + self.ingest_batch_size]
            try:
                await self.ingest_limiter.acquire(len(batch))
            except (RateLimitExceeded, RedisError) as e:
                logger.error(f"[Orchestrator] Ingest rate limiter failed: {e}")
                DOCUMENTS_INGESTED.labels("failed").inc(len(batch))
                results.extend(
                    IngestionResult(
                        document_id=doc.id,
                        status="failed",
                        error_kind=type(e).__name__,
                        error=str(e),
                    )
                    for doc in batch
                )
                continue
            results.extend(await asyncio.gather(*(self._add_isolated(doc) for doc in batch)))

        batch_result = BatchIngestionResult(results=results)
        logger.info(
            f"[Orchestrator] Batch complete: {batch_result.successful}/{batch_result.total} succeeded"
        )
        return batch_result

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def _resolve_options(self, options: QueryOptions | None) -> tuple[int, float]:
        options = options or QueryOptions()
        top_k = self.default_top_k if options.top_k is None else options.top_k
        min_score = self.default_min_score if options.min_score is None else options.min_score
        if not 1 <= top_k <= MAX_TOP_K:
            raise ValueError(f"top_k must be between 1 and {MAX_TOP_K}")
        if not 0.0 <= min_score <= 1.0:
            raise ValueError("min_score must be between 0 and 1")
        return top_k, min_score

    async def query(
        self, query: str, domain: str, options: QueryOptions | None = None
    ) -> RAGResult:
        """Answer a query from the documents of one domain.

        Raises:
            ValueError: invalid query or options
            ProviderError, VectorStoreError: retrieval failed
            SynthesisError: the answer could not be generated
        """
        self._require_initialized()
        if not isinstance(query, str) or not query.strip():
            raise ValueError("query must not be empty")
        if len(query) > MAX_QUERY_CHARS:
            raise ValueError(f"query must be at most {MAX_QUERY_CHARS} characters")
        if not domain:
            raise ValueError("domain must not be empty")
        top_k, min_score = self._resolve_options(options)

        start = time.perf_counter()
        timings: dict[str, int] = {}
        notices: list[RAGError] = []
        stage = "planning"
        ACTIVE_QUERIES.inc()

        try:
            with stage_timer("planning", timings):
                available = await self.vector_store.list_namespaces()
                plan = await self.planner.plan(query, domain, available or None)
            if plan.degraded:
                notices.append(PlanningDegraded(plan.reasoning or "Fallback plan used"))

            stage = "retrieval"
            with stage_timer("retrieval", timings):
                matches = await self.retriever.retrieve(plan, domain, top_k, min_score)
            if not matches:
                notices.append(
                    RetrievalEmpty(f"No matches with score >= {min_score} in '{domain}'")
                )

            stage = "synthesis"
            with stage_timer("synthesis", timings):
                synthesis = await self.synthesizer.synthesize(query, plan, matches, domain)
        except RAGError as e:
            QUERIES_TOTAL.labels("error").inc()
            STAGE_FAILURES.labels(stage, e.kind).inc()
            logger.error(f"[Orchestrator] Query failed during {stage}: {e.kind}: {e.message}")
            raise
        finally:
            ACTIVE_QUERIES.dec()

        for notice in notices:
            STAGE_NOTICES.labels(notice.kind).inc()
            logger.warning(f"[Orchestrator] {notice.kind}: {notice.message}")

        QUERIES_TOTAL.labels("ok").inc()
        processing_time_ms = _elapsed_ms(start)
        logger.info(
            f"[Orchestrator] Query in '{domain}' answered in {processing_time_ms}ms "
            f"({len(synthesis.sources)} sources, confidence={synthesis.confidence:.2f})"
        )

        return RAGResult(
            answer=synthesis.answer,
            sources=synthesis.sources,
            confidence=synthesis.confidence,
            processing_time_ms=processing_time_ms,
            metadata={
                "original_query": query,
                "plan": plan.to_dict(),
                "total_matches": len(matches),
                "stage_timings": timings,
                "notices": [n.to_dict() for n in notices],
            },
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self) -> SystemStatus:
        """Readiness and index statistics."""
        if not self._initialized:
            return SystemStatus(
                is_ready=False,
                document_count=0,
                vector_count=0,
                namespaces={},
                vector_dimensions=self.embedder.dimension,
                embedding_model=self.embedder.model,
            )

        stats = await self.vector_store.stats()
        return SystemStatus(
            is_ready=True,
            document_count=stats.document_count,
            vector_count=stats.total_vector_count,
            namespaces=stats.namespaces,
            vector_dimensions=stats.dimension,
            embedding_model=self.embedder.model,
        )


def build_orchestrator(settings: Settings) -> RAGOrchestrator:
    """Wire the production components from settings.

    Nothing is connected until `initialize()` is awaited.
    """
    client = create_openai_client(settings)
    embedder = build_embedding_provider(settings, client)
    completion = build_completion_provider(settings, client)
    vector_store = build_vector_store(settings)

    return RAGOrchestrator(
        chunker=Chunker(ChunkingOptions.from_settings(settings)),
        embedder=embedder,
        vector_store=vector_store,
        planner=QueryPlanner(completion),
        retriever=Retriever(
            vector_store,
            embedder,
            default_top_k=settings.default_top_k,
            default_min_score=settings.min_score,
            max_matches_per_document=settings.max_matches_per_document,
            fetch_multiplier=settings.retrieval_fetch_multiplier,
        ),
        synthesizer=ResponseSynthesizer(
            completion,
            max_tokens_per_context=settings.max_tokens_per_context,
            temperature=settings.completion_temperature,
            max_tokens=settings.completion_max_tokens,
        ),
        ingest_limiter=build_rate_limiter(
            settings,
            "ingestion",
            settings.ingest_documents_per_second,
            capacity=max(settings.ingest_batch_size, settings.ingest_documents_per_second),
        ),
        ingest_batch_size=settings.ingest_batch_size,
        default_top_k=settings.default_top_k,
        default_min_score=settings.min_score,
    )
