"""Qdrant vector store client.

All domains share a single collection; the domain is stored in the
`namespace` payload field, indexed as a Qdrant tenant key, and every read and
write is scoped to it.

Point payload:
- namespace: owning domain
- record_id: "{document_id}_{chunk_index}"
- metadata: chunk text, document_id, chunk_index, total_chunks and the
  document's own metadata
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar
from uuid import NAMESPACE_URL, uuid5

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models
from qdrant_client.http.models import Distance, PayloadSchemaType, VectorParams

from src.core.config import Settings
from src.core.resilience import RetryPolicy, call_with_retry
from src.observability.metrics import PROVIDER_RETRIES
from src.rag.errors import VectorStoreError
from src.rag.memory_store import InMemoryVectorStore
from src.rag.models import IndexStats, VectorMatch, VectorRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPSERT_BATCH_SIZE = 100

# Metadata fields filtered on by the planner and the document lifecycle
_INDEXED_METADATA_FIELDS = ("document_id", "domain", "tags", "content_type", "source", "author")
_DATETIME_METADATA_FIELDS = ("created_at", "updated_at")


class VectorStore(Protocol):
    """Namespace-partitioned similarity index."""

    dimension: int

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int: ...

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]: ...

    async def delete(
        self,
        namespace: str,
        ids: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> int: ...

    async def fetch_metadata(
        self, namespace: str, filter: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def stats(self) -> IndexStats: ...

    async def list_namespaces(self) -> list[str]: ...

    async def health_check(self) -> bool: ...


def point_id(record_id: str) -> str:
    """Deterministic Qdrant point id for a record id."""
    return str(uuid5(NAMESPACE_URL, record_id))


def build_filter(
    namespace: str,
    filter: dict[str, Any] | None = None,
    ids: list[str] | None = None,
) -> qdrant_models.Filter:
    """Translate a metadata filter into a namespace-scoped Qdrant filter.

    Scalar values are exact matches; list/set values match when the stored
    value (or any element of a stored list) is in the set; dict values are
    datetime ranges.
    """
    conditions: list = [
        qdrant_models.FieldCondition(
            key="namespace",
            match=qdrant_models.MatchValue(value=namespace),
        )
    ]

    for key, value in (filter or {}).items():
        if isinstance(value, dict):
            conditions.append(
                qdrant_models.FieldCondition(
                    key=f"metadata.{key}",
                    range=qdrant_models.DatetimeRange(
                        gt=value.get("gt"),
                        gte=value.get("gte"),
                        lt=value.get("lt"),
                        lte=value.get("lte"),
                    ),
                )
            )
            continue
        if isinstance(value, (list, set, tuple, frozenset)):
            match = qdrant_models.MatchAny(any=list(value))
        else:
            match = qdrant_models.MatchValue(value=value)
        conditions.append(qdrant_models.FieldCondition(key=f"metadata.{key}", match=match))

    if ids is not None:
        conditions.append(qdrant_models.HasIdCondition(has_id=[point_id(i) for i in ids]))

    return qdrant_models.Filter(must=conditions)


class QdrantVectorStore:
    """Qdrant vector store for RAG embeddings.

    One collection holds every namespace:
    - Vector embeddings (dimensions from config)
    - Payload: namespace, record_id, metadata
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str = "rag_documents",
        dimension: int = 1536,
        retry_policy: RetryPolicy | None = None,
    ):
        self.client = client
        self.collection_name = collection_name
        self.dimension = dimension
        self.retry_policy = retry_policy or RetryPolicy()

    async def _call(self, description: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            operation,
            policy=self.retry_policy,
            description=f"Qdrant {description}",
            error_factory=lambda msg, _attempts: VectorStoreError(msg),
            on_retry=lambda _attempt: PROVIDER_RETRIES.labels("vector_store").inc(),
        )

    async def initialize(self) -> None:
        """Create the collection and payload indexes if missing."""
        exists = await self._call(
            "collection_exists",
            lambda: self.client.collection_exists(self.collection_name),
        )
        if exists:
            logger.info(f"[VectorStore] Using existing collection '{self.collection_name}'")
            return

        logger.info(
            f"[VectorStore] Creating collection '{self.collection_name}' ({self.dimension} dims)"
        )
        await self._call(
            "create_collection",
            lambda: self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
                # Store large text payloads on disk to save RAM
                on_disk_payload=True,
                # Per-tenant HNSW indexes
                # See: https://qdrant.tech/documentation/guides/multitenancy/
                hnsw_config=qdrant_models.HnswConfigDiff(payload_m=16, m=16),
                optimizers_config=qdrant_models.OptimizersConfigDiff(indexing_threshold=1000),
                quantization_config=qdrant_models.ScalarQuantization(
                    scalar=qdrant_models.ScalarQuantizationConfig(
                        type=qdrant_models.ScalarType.INT8,
                        quantile=0.99,
                        always_ram=True,
                    ),
                ),
            ),
        )

        # Tenant index co-locates vectors of the same namespace on disk
        await self._call(
            "create_payload_index",
            lambda: self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name="namespace",
                field_schema=qdrant_models.KeywordIndexParams(
                    type=qdrant_models.KeywordIndexType.KEYWORD,
                    is_tenant=True,
                ),
            ),
        )
        for field_name in _INDEXED_METADATA_FIELDS:
            await self._call(
                "create_payload_index",
                lambda field_name=field_name: self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=f"metadata.{field_name}",
                    field_schema=PayloadSchemaType.KEYWORD,
                ),
            )
        for field_name in _DATETIME_METADATA_FIELDS:
            await self._call(
                "create_payload_index",
                lambda field_name=field_name: self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=f"metadata.{field_name}",
                    field_schema=PayloadSchemaType.DATETIME,
                ),
            )

    async def close(self) -> None:
        await self.client.close()

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        """Insert or replace records in a namespace.

        Returns:
            Number of records upserted
        """
        if not records:
            return 0

        for record in records:
            if record.namespace != namespace:
                raise VectorStoreError(
                    f"Record {record.id} belongs to namespace '{record.namespace}', not '{namespace}'"
                )
            if len(record.vector) != self.dimension:
                raise VectorStoreError(
                    f"Record {record.id} has {len(record.vector)} dimensions; expected {self.dimension}"
                )

        points = [
            qdrant_models.PointStruct(
                id=point_id(record.id),
                vector=record.vector,
                payload={
                    "namespace": namespace,
                    "record_id": record.id,
                    "metadata": record.metadata,
                },
            )
            for record in records
        ]

        # Batch upserts to avoid timeouts on large payloads
        total_upserted = 0
        total_batches = (len(points) + UPSERT_BATCH_SIZE - 1) // UPSERT_BATCH_SIZE
        for i in range(0, len(points), UPSERT_BATCH_SIZE):
            batch = points[i : i + UPSERT_BATCH_SIZE]
            logger.debug(
                f"[VectorStore] Upserting batch {i // UPSERT_BATCH_SIZE + 1}/{total_batches} "
                f"({len(batch)} points) into '{namespace}'"
            )
            await self._call(
                "upsert",
                lambda batch=batch: self.client.upsert(
                    collection_name=self.collection_name, points=batch, wait=True
                ),
            )
            total_upserted += len(batch)

        logger.info(f"[VectorStore] Upserted {total_upserted} points into '{namespace}'")
        return total_upserted

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours within a namespace, best first."""
        results = await self._call(
            "query_points",
            lambda: self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                query_filter=build_filter(namespace, filter),
                with_payload=True,
            ),
        )

        matches = [
            VectorMatch(
                id=point.payload.get("record_id", str(point.id)),
                score=point.score,
                metadata={
                    **point.payload.get("metadata", {}),
                    "namespace": point.payload.get("namespace"),
                },
            )
            for point in results.points
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    async def delete(
        self,
        namespace: str,
        ids: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> int:
        """Delete records by id and/or metadata filter.

        Returns:
            Number of records deleted
        """
        if not ids and not filter:
            raise VectorStoreError("delete requires ids or a filter")

        selector = build_filter(namespace, filter, ids=ids or None)

        count_before = await self._call(
            "count",
            lambda: self.client.count(
                collection_name=self.collection_name, count_filter=selector, exact=True
            ),
        )
        if count_before.count == 0:
            return 0

        await self._call(
            "delete",
            lambda: self.client.delete(
                collection_name=self.collection_name,
                points_selector=qdrant_models.FilterSelector(filter=selector),
                wait=True,
            ),
        )
        logger.info(f"[VectorStore] Deleted {count_before.count} points from '{namespace}'")
        return count_before.count

    async def fetch_metadata(self, namespace: str, filter: dict[str, Any]) -> dict[str, Any] | None:
        """Metadata of any one record in a namespace matching the filter."""
        points, _next_offset = await self._call(
            "scroll",
            lambda: self.client.scroll(
                collection_name=self.collection_name,
                scroll_filter=build_filter(namespace, filter),
                limit=1,
                with_payload=True,
                with_vectors=False,
            ),
        )
        if not points:
            return None
        return dict(points[0].payload.get("metadata", {}))

    async def _facet_counts(
        self, key: str, facet_filter: qdrant_models.Filter | None = None
    ) -> dict[str, int]:
        response = await self._call(
            "facet",
            lambda: self.client.facet(
                collection_name=self.collection_name,
                key=key,
                facet_filter=facet_filter,
                limit=10000,
                exact=True,
            ),
        )
        return {str(hit.value): hit.count for hit in response.hits}

    async def list_namespaces(self) -> list[str]:
        return sorted(await self._facet_counts("namespace"))

    async def stats(self) -> IndexStats:
        """Collection statistics.

        A document is identified by (namespace, document_id), so document ids
        are counted per namespace.
        """
        total = await self._call(
            "count",
            lambda: self.client.count(collection_name=self.collection_name, exact=True),
        )
        namespaces = await self._facet_counts("namespace")
        document_count = 0
        for namespace in namespaces:
            documents = await self._facet_counts("metadata.document_id", build_filter(namespace))
            document_count += len(documents)
        return IndexStats(
            total_vector_count=total.count,
            document_count=document_count,
            dimension=self.dimension,
            namespaces=namespaces,
        )

    async def health_check(self) -> bool:
        try:
            await self.client.get_collections()
            return True
        except Exception as e:
            logger.warning(f"[VectorStore] Health check failed: {e}")
            return False


def build_vector_store(settings: Settings) -> VectorStore:
    """Create the vector store selected by `vector_store_backend`."""
    if settings.vector_store_backend == "memory":
        return InMemoryVectorStore(dimension=settings.embedding_dimensions)

    client = AsyncQdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key,
        timeout=int(settings.provider_timeout_seconds),
    )
    return QdrantVectorStore(
        client,
        collection_name=settings.qdrant_collection,
        dimension=settings.embedding_dimensions,
        retry_policy=RetryPolicy.from_settings(settings),
    )
