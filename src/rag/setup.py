"""Development setup helpers: seed sample data, validate, demo, clean up."""

import logging
from dataclasses import dataclass, field

from src.rag.errors import ProviderError, RAGError
from src.rag.models import BatchIngestionResult, QueryOptions, RAGResult
from src.rag.orchestrator import RAGOrchestrator
from src.rag.sample_data import DEMO_QUERIES, SAMPLE_DOCUMENTS

logger = logging.getLogger(__name__)


@dataclass
class SetupValidation:
    """Outcome of validate_setup."""

    is_valid: bool
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass
class DemoRun:
    """One demo query and its result (or error)."""

    query: str
    domain: str
    result: RAGResult | None = None
    error: str | None = None


class RAGSetupUtility:
    """Seeds, checks and demonstrates a RAG deployment."""

    def __init__(self, orchestrator: RAGOrchestrator):
        self.orchestrator = orchestrator

    async def seed_sample_data(self) -> BatchIngestionResult:
        """Add the bundled sample documents."""
        status = await self.orchestrator.get_status()
        if not status.is_ready:
            raise RAGError("RAG system is not ready; call initialize() first")

        logger.info(f"[Setup] Adding {len(SAMPLE_DOCUMENTS)} sample documents")
        result = await self.orchestrator.batch_add_documents(SAMPLE_DOCUMENTS)
        for failed in (r for r in result.results if not r.success):
            logger.warning(f"[Setup] Sample {failed.document_id} failed: {failed.error_kind}: {failed.error}")
        logger.info(f"[Setup] Seeded {result.successful}/{result.total} sample documents")
        return result

    async def validate_setup(self, check_providers: bool = True) -> SetupValidation:
        """Check readiness, backend health and index contents."""
        issues: list[str] = []
        recommendations: list[str] = []

        try:
            status = await self.orchestrator.get_status()
        except RAGError as e:
            return SetupValidation(
                is_valid=False,
                issues=[f"Validation failed: {e.kind}: {e.message}"],
                recommendations=["Check system configuration and try again"],
            )

        if not status.is_ready:
            issues.append("RAG system is not initialized")
            recommendations.append("Call initialize() before using the system")

        if not await self.orchestrator.vector_store.health_check():
            issues.append("Vector store is not healthy")
            recommendations.append("Check QDRANT_URL and QDRANT_API_KEY")

        if check_providers:
            try:
                await self.orchestrator.embedder.embed("health check")
            except ProviderError as e:
                issues.append(f"Embedding provider is not healthy: {e.message}")
                recommendations.append("Check OPENAI_API_KEY or the Azure OpenAI settings")

        if status.is_ready and status.vector_count == 0:
            recommendations.append("Index is empty; seed it with seed_sample_data()")
        elif status.vector_count > 0:
            recommendations.append("System is ready for queries")
            recommendations.append("Try run_demo() to see sample answers")

        return SetupValidation(is_valid=not issues, issues=issues, recommendations=recommendations)

    async def run_demo(self, options: QueryOptions | None = None) -> list[DemoRun]:
        """Run the demo queries; a failing query is recorded, not raised."""
        runs = []
        for query, domain in DEMO_QUERIES:
            logger.info(f"[Setup] Demo query '{query}' in '{domain}'")
            try:
                result = await self.orchestrator.query(query, domain, options)
            except RAGError as e:
                logger.warning(f"[Setup] Demo query failed: {e.kind}: {e.message}")
                runs.append(DemoRun(query=query, domain=domain, error=f"{e.kind}: {e.message}"))
                continue

            logger.info(
                f"[Setup] {len(result.sources)} sources, confidence={result.confidence:.2f}, "
                f"{result.processing_time_ms}ms"
            )
            runs.append(DemoRun(query=query, domain=domain, result=result))
        return runs

    async def clear_sample_data(self) -> int:
        """Remove the sample documents; returns the number of chunks deleted."""
        removed = 0
        for doc in SAMPLE_DOCUMENTS:
            result = await self.orchestrator.remove_document(doc.id, doc.domain)
            removed += result.chunk_count
        logger.info(f"[Setup] Cleared sample data ({removed} chunks)")
        return removed
