"""
Tests for the development setup utility.
"""

import pytest

from src.rag.errors import ProviderError, RAGError
from src.rag.sample_data import DEMO_QUERIES, SAMPLE_DOCUMENTS, sample_documents_for
from src.rag.setup import RAGSetupUtility


class TestSetupUtility:
    @pytest.mark.asyncio
    async def test_seed_sample_data(self, ready_orchestrator):
        result = await RAGSetupUtility(ready_orchestrator).seed_sample_data()

        assert result.successful == len(SAMPLE_DOCUMENTS)
        status = await ready_orchestrator.get_status()
        assert set(status.namespaces) == {"fitness", "trading", "general"}

    @pytest.mark.asyncio
    async def test_seed_requires_ready_system(self, orchestrator):
        with pytest.raises(RAGError):
            await RAGSetupUtility(orchestrator).seed_sample_data()

    @pytest.mark.asyncio
    async def test_validate_empty_index_recommends_seeding(self, ready_orchestrator):
        validation = await RAGSetupUtility(ready_orchestrator).validate_setup()

        assert validation.is_valid
        assert any("seed_sample_data" in r for r in validation.recommendations)

    @pytest.mark.asyncio
    async def test_validate_reports_uninitialized_system(self, orchestrator):
        validation = await RAGSetupUtility(orchestrator).validate_setup(check_providers=False)

        assert not validation.is_valid
        assert "RAG system is not initialized" in validation.issues

    @pytest.mark.asyncio
    async def test_validate_reports_embedding_failure(self, ready_orchestrator, embedder):
        async def failing(_text):
            raise ProviderError("no credentials", provider="embedding")

        embedder.embed = failing
        validation = await RAGSetupUtility(ready_orchestrator).validate_setup()

        assert not validation.is_valid
        assert any("Embedding provider" in issue for issue in validation.issues)

    @pytest.mark.asyncio
    async def test_run_demo_records_each_query(self, ready_orchestrator, completion):
        setup = RAGSetupUtility(ready_orchestrator)
        await setup.seed_sample_data()

        runs = await setup.run_demo()

        assert [(r.query, r.domain) for r in runs] == DEMO_QUERIES
        assert all(r.result is not None and r.error is None for r in runs)

    @pytest.mark.asyncio
    async def test_run_demo_records_failures(self, ready_orchestrator, completion):
        completion.answer = ""

        runs = await RAGSetupUtility(ready_orchestrator).run_demo()

        assert all(r.error and r.error.startswith("SynthesisError") for r in runs)

    @pytest.mark.asyncio
    async def test_clear_sample_data(self, ready_orchestrator):
        setup = RAGSetupUtility(ready_orchestrator)
        await setup.seed_sample_data()

        removed = await setup.clear_sample_data()

        assert removed >= len(SAMPLE_DOCUMENTS)
        assert (await ready_orchestrator.get_status()).vector_count == 0


def test_sample_documents_for_domain():
    docs = sample_documents_for("trading")

    assert docs
    assert all(d.domain == "trading" for d in docs)
