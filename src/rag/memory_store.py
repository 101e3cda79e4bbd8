"""In-process vector store backed by numpy.

Used for local development and tests. Same contract as the Qdrant store:
namespace-partitioned, idempotent by record id, cosine similarity.
"""

import logging
from typing import Any

import numpy as np

from src.rag.errors import VectorStoreError
from src.rag.models import IndexStats, VectorMatch, VectorRecord, parse_timestamp

logger = logging.getLogger(__name__)


def _in_range(actual: Any, bounds: dict[str, Any]) -> bool:
    """Whether a timestamp lies within inclusive/exclusive `gt/gte/lt/lte` bounds."""
    value = parse_timestamp(actual)
    if value is None:
        return False
    for op, bound in bounds.items():
        limit = parse_timestamp(bound)
        if limit is None:
            continue
        if op == "gte" and value < limit:
            return False
        if op == "gt" and value <= limit:
            return False
        if op == "lte" and value > limit:
            return False
        if op == "lt" and value >= limit:
            return False
    return True


def matches_filter(metadata: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    """Whether metadata satisfies every predicate of a filter.

    Scalar values are exact matches; collection values are set membership.
    A list-valued metadata field matches when any element matches. Dict
    values are timestamp ranges (`{"gte": ..., "lte": ...}`).
    """
    for key, expected in (filter or {}).items():
        if isinstance(expected, dict):
            if not _in_range(metadata.get(key), expected):
                return False
            continue
        if isinstance(expected, (list, set, tuple, frozenset)):
            allowed = set(expected)
        else:
            allowed = {expected}

        actual = metadata.get(key)
        if isinstance(actual, (list, tuple, set)):
            if not allowed.intersection(actual):
                return False
        elif actual not in allowed:
            return False
    return True


def _cosine_similarity(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of each matrix row with the query vector."""
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = np.linalg.norm(query)
    denom = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ query / denom, 0.0)
    return scores


class InMemoryVectorStore:
    """Dictionary of namespaces holding records keyed by id."""

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}

    async def initialize(self) -> None:
        logger.info(f"[VectorStore] Using in-memory store ({self.dimension} dims)")

    async def close(self) -> None:
        return None

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        for record in records:
            if record.namespace != namespace:
                raise VectorStoreError(
                    f"Record {record.id} belongs to namespace '{record.namespace}', not '{namespace}'"
                )
            if len(record.vector) != self.dimension:
                raise VectorStoreError(
                    f"Record {record.id} has {len(record.vector)} dimensions; expected {self.dimension}"
                )

        bucket = self._namespaces.setdefault(namespace, {})
        for record in records:
            bucket[record.id] = VectorRecord(
                id=record.id,
                vector=list(record.vector),
                namespace=namespace,
                metadata=dict(record.metadata),
            )
        return len(records)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        candidates = [
            r for r in self._namespaces.get(namespace, {}).values() if matches_filter(r.metadata, filter)
        ]
        if not candidates or top_k <= 0:
            return []

        matrix = np.asarray([r.vector for r in candidates], dtype=float)
        scores = _cosine_similarity(matrix, np.asarray(vector, dtype=float))
        order = np.argsort(-scores, kind="stable")[:top_k]

        return [
            VectorMatch(
                id=candidates[i].id,
                score=float(scores[i]),
                metadata={**candidates[i].metadata, "namespace": namespace},
            )
            for i in order
        ]

    async def delete(
        self,
        namespace: str,
        ids: list[str] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> int:
        if not ids and not filter:
            raise VectorStoreError("delete requires ids or a filter")

        bucket = self._namespaces.get(namespace, {})
        wanted = set(ids) if ids else None
        doomed = [
            record_id
            for record_id, record in bucket.items()
            if (wanted is None or record_id in wanted) and matches_filter(record.metadata, filter)
        ]
        for record_id in doomed:
            del bucket[record_id]
        if not bucket:
            self._namespaces.pop(namespace, None)
        return len(doomed)

    async def fetch_metadata(self, namespace: str, filter: dict[str, Any]) -> dict[str, Any] | None:
        for record in self._namespaces.get(namespace, {}).values():
            if matches_filter(record.metadata, filter):
                return dict(record.metadata)
        return None

    async def list_namespaces(self) -> list[str]:
        return sorted(self._namespaces)

    async def stats(self) -> IndexStats:
        # A document is identified by (namespace, document_id)
        namespaces = {ns: len(records) for ns, records in self._namespaces.items()}
        documents = {
            (ns, r.metadata.get("document_id"))
            for ns, records in self._namespaces.items()
            for r in records.values()
        }
        return IndexStats(
            total_vector_count=sum(namespaces.values()),
            document_count=len(documents),
            dimension=self.dimension,
            namespaces=namespaces,
        )

    async def health_check(self) -> bool:
        return True
