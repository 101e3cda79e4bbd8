"""
Tests for the vector stores.

Covers: In-memory store contract, Qdrant client calls and filter translation
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from qdrant_client.http import models as qdrant_models

from src.core.config import Settings
from src.core.resilience import RetryPolicy
from src.rag.errors import VectorStoreError
from src.rag.memory_store import InMemoryVectorStore, matches_filter
from src.rag.models import VectorRecord
from src.rag.vector_store import QdrantVectorStore, build_filter, build_vector_store, point_id

DIM = 3


def record(doc_id: str, idx: int, vector, namespace="fitness", **metadata) -> VectorRecord:
    return VectorRecord(
        id=VectorRecord.make_id(doc_id, idx),
        vector=vector,
        namespace=namespace,
        metadata={"document_id": doc_id, "chunk_index": idx, "domain": namespace, **metadata},
    )


class TestInMemoryVectorStore:
    @pytest.fixture
    def store(self):
        return InMemoryVectorStore(dimension=DIM)

    @pytest.mark.asyncio
    async def test_query_ranks_by_cosine(self, store):
        await store.upsert(
            "fitness",
            [record("a", 0, [1.0, 0.0, 0.0]), record("b", 0, [0.7, 0.7, 0.0]), record("c", 0, [0.0, 0.0, 1.0])],
        )

        matches = await store.query("fitness", [1.0, 0.0, 0.0], top_k=2)

        assert [m.id for m in matches] == ["a_0", "b_0"]
        assert matches[0].score == pytest.approx(1.0)
        assert matches[0].metadata["namespace"] == "fitness"

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, store):
        await store.upsert("fitness", [record("a", 0, [1.0, 0.0, 0.0])])
        await store.upsert("trading", [record("t", 0, [1.0, 0.0, 0.0], namespace="trading")])

        matches = await store.query("trading", [1.0, 0.0, 0.0], top_k=10)

        assert [m.id for m in matches] == ["t_0"]

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store):
        await store.upsert("fitness", [record("a", 0, [1.0, 0.0, 0.0])])
        await store.upsert("fitness", [record("a", 0, [0.0, 1.0, 0.0])])

        stats = await store.stats()
        matches = await store.query("fitness", [0.0, 1.0, 0.0], top_k=1)

        assert stats.total_vector_count == 1
        assert matches[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_upsert_rejects_wrong_dimension(self, store):
        with pytest.raises(VectorStoreError):
            await store.upsert("fitness", [record("a", 0, [1.0, 0.0])])

    @pytest.mark.asyncio
    async def test_upsert_rejects_foreign_namespace(self, store):
        with pytest.raises(VectorStoreError):
            await store.upsert("fitness", [record("a", 0, [1.0, 0.0, 0.0], namespace="trading")])

    @pytest.mark.asyncio
    async def test_query_applies_filter(self, store):
        await store.upsert(
            "fitness",
            [
                record("a", 0, [1.0, 0.0, 0.0], tags=["hiit"]),
                record("b", 0, [1.0, 0.0, 0.0], tags=["yoga"]),
            ],
        )

        matches = await store.query("fitness", [1.0, 0.0, 0.0], top_k=5, filter={"tags": ["hiit"]})

        assert [m.id for m in matches] == ["a_0"]

    @pytest.mark.asyncio
    async def test_delete_by_filter_and_ids(self, store):
        await store.upsert(
            "fitness",
            [record("a", 0, [1.0, 0.0, 0.0]), record("a", 1, [1.0, 0.0, 0.0]), record("b", 0, [0.0, 1.0, 0.0])],
        )

        assert await store.delete("fitness", filter={"document_id": "a"}) == 2
        assert await store.delete("fitness", ids=["b_0"]) == 1
        assert await store.list_namespaces() == []

    @pytest.mark.asyncio
    async def test_delete_requires_selector(self, store):
        with pytest.raises(VectorStoreError):
            await store.delete("fitness")

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.upsert("fitness", [record("a", 0, [1.0, 0.0, 0.0]), record("a", 1, [0.0, 1.0, 0.0])])
        await store.upsert("trading", [record("a", 0, [1.0, 0.0, 0.0], namespace="trading")])

        stats = await store.stats()

        assert stats.total_vector_count == 3
        assert stats.document_count == 2
        assert stats.namespaces == {"fitness": 2, "trading": 1}

    @pytest.mark.asyncio
    async def test_zero_vector_scores_zero(self, store):
        await store.upsert("fitness", [record("a", 0, [1.0, 0.0, 0.0])])

        matches = await store.query("fitness", [0.0, 0.0, 0.0], top_k=1)

        assert matches[0].score == 0.0


class TestMatchesFilter:
    def test_scalar_and_list_predicates(self):
        metadata = {"domain": "fitness", "tags": ["hiit", "cardio"], "author": "sam"}

        assert matches_filter(metadata, {"domain": "fitness", "tags": ["cardio"]})
        assert matches_filter(metadata, {"author": ["sam", "alex"]})
        assert not matches_filter(metadata, {"tags": "yoga"})
        assert not matches_filter(metadata, {"source": "blog"})
        assert matches_filter(metadata, None)

    def test_timestamp_range(self):
        metadata = {"created_at": "2024-01-15T10:00:00Z"}

        assert matches_filter(metadata, {"created_at": {"gte": "2024-01-01", "lte": "2024-01-31T23:59:59Z"}})
        assert matches_filter(metadata, {"created_at": {"gte": "2024-01-15T10:00:00+00:00"}})
        assert not matches_filter(metadata, {"created_at": {"gt": "2024-01-15T10:00:00Z"}})
        assert not matches_filter(metadata, {"created_at": {"lt": "2024-01-10"}})
        assert not matches_filter({}, {"created_at": {"gte": "2024-01-01"}})


class TestBuildFilter:
    def test_namespace_always_first(self):
        result = build_filter("fitness")

        assert result.must[0].key == "namespace"
        assert result.must[0].match.value == "fitness"

    def test_metadata_conditions(self):
        result = build_filter("fitness", {"tags": ["a", "b"], "author": "sam"}, ids=["d_0"])

        tags, author, ids = result.must[1:]
        assert tags.key == "metadata.tags"
        assert isinstance(tags.match, qdrant_models.MatchAny)
        assert author.match.value == "sam"
        assert ids.has_id == [point_id("d_0")]

    def test_range_condition(self):
        result = build_filter("fitness", {"created_at": {"gte": "2024-01-01T00:00:00+00:00"}})

        condition = result.must[1]
        assert condition.key == "metadata.created_at"
        assert isinstance(condition.range, qdrant_models.DatetimeRange)
        assert condition.range.gte is not None
        assert condition.range.lte is None

    def test_point_id_is_deterministic(self):
        assert point_id("doc_1") == point_id("doc_1")
        assert point_id("doc_1") != point_id("doc_2")


def make_qdrant_store(client: AsyncMock) -> QdrantVectorStore:
    return QdrantVectorStore(
        client,
        collection_name="test",
        dimension=DIM,
        retry_policy=RetryPolicy(timeout_seconds=1.0, max_attempts=2, initial_backoff=0, max_backoff=0, jitter=0),
    )


class TestQdrantVectorStore:
    @pytest.mark.asyncio
    async def test_initialize_creates_collection_and_indexes(self):
        client = AsyncMock()
        client.collection_exists.return_value = False
        store = make_qdrant_store(client)

        await store.initialize()

        client.create_collection.assert_awaited_once()
        fields = [c.kwargs["field_name"] for c in client.create_payload_index.await_args_list]
        assert fields[0] == "namespace"
        assert "metadata.document_id" in fields
        assert "metadata.created_at" in fields

    @pytest.mark.asyncio
    async def test_initialize_keeps_existing_collection(self):
        client = AsyncMock()
        client.collection_exists.return_value = True

        await make_qdrant_store(client).initialize()

        client.create_collection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upsert_batches(self):
        client = AsyncMock()
        store = make_qdrant_store(client)
        records = [record("doc", i, [1.0, 0.0, 0.0]) for i in range(150)]

        assert await store.upsert("fitness", records) == 150
        assert client.upsert.await_count == 2
        first_point = client.upsert.await_args_list[0].kwargs["points"][0]
        assert first_point.payload["namespace"] == "fitness"
        assert first_point.payload["record_id"] == "doc_0"

    @pytest.mark.asyncio
    async def test_query_maps_points(self):
        client = AsyncMock()
        client.query_points.return_value = SimpleNamespace(
            points=[
                SimpleNamespace(
                    id="uuid-1",
                    score=0.91,
                    payload={"namespace": "fitness", "record_id": "doc_0", "metadata": {"text": "t"}},
                )
            ]
        )

        matches = await make_qdrant_store(client).query("fitness", [1.0, 0.0, 0.0], top_k=3)

        assert matches[0].id == "doc_0"
        assert matches[0].metadata == {"text": "t", "namespace": "fitness"}
        assert client.query_points.await_args.kwargs["limit"] == 3

    @pytest.mark.asyncio
    async def test_delete_counts_then_deletes(self):
        client = AsyncMock()
        client.count.return_value = SimpleNamespace(count=4)

        deleted = await make_qdrant_store(client).delete("fitness", filter={"document_id": "doc"})

        assert deleted == 4
        client.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_nothing_skips_delete_call(self):
        client = AsyncMock()
        client.count.return_value = SimpleNamespace(count=0)

        assert await make_qdrant_store(client).delete("fitness", ids=["x_0"]) == 0
        client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stats_from_facets(self):
        client = AsyncMock()
        client.count.return_value = SimpleNamespace(count=5)
        client.facet.side_effect = [
            SimpleNamespace(hits=[SimpleNamespace(value="fitness", count=3), SimpleNamespace(value="trading", count=2)]),
            SimpleNamespace(hits=[SimpleNamespace(value="a", count=2), SimpleNamespace(value="b", count=1)]),
            SimpleNamespace(hits=[SimpleNamespace(value="a", count=2)]),
        ]

        stats = await make_qdrant_store(client).stats()

        assert stats.total_vector_count == 5
        # The same document id in two namespaces is two documents
        assert stats.document_count == 3
        assert stats.namespaces == {"fitness": 3, "trading": 2}
        per_namespace = client.facet.await_args_list[1].kwargs
        assert per_namespace["key"] == "metadata.document_id"
        assert per_namespace["facet_filter"].must[0].match.value == "fitness"

    @pytest.mark.asyncio
    async def test_fetch_metadata_scrolls_one_point(self):
        client = AsyncMock()
        client.scroll.return_value = (
            [SimpleNamespace(payload={"namespace": "fitness", "metadata": {"created_at": "2024-01-15T10:00:00Z"}})],
            None,
        )

        metadata = await make_qdrant_store(client).fetch_metadata("fitness", {"document_id": "doc"})

        assert metadata == {"created_at": "2024-01-15T10:00:00Z"}
        assert client.scroll.await_args.kwargs["limit"] == 1

        client.scroll.return_value = ([], None)
        assert await make_qdrant_store(client).fetch_metadata("fitness", {"document_id": "doc"}) is None

    @pytest.mark.asyncio
    async def test_failures_raise_vector_store_error(self):
        client = AsyncMock()
        client.query_points.side_effect = ConnectionError("refused")

        with pytest.raises(VectorStoreError):
            await make_qdrant_store(client).query("fitness", [1.0, 0.0, 0.0], top_k=3)
        assert client.query_points.await_count == 2

    @pytest.mark.asyncio
    async def test_health_check(self):
        client = AsyncMock()
        assert await make_qdrant_store(client).health_check()

        client.get_collections.side_effect = ConnectionError("refused")
        assert not await make_qdrant_store(client).health_check()


def test_build_vector_store_memory_backend():
    store = build_vector_store(Settings(vector_store_backend="memory", embedding_dimensions=8))

    assert isinstance(store, InMemoryVectorStore)
    assert store.dimension == 8
