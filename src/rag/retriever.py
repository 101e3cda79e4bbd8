"""RAG Retriever - semantic search within a domain.

Combines embedding and vector search for chunk retrieval, then applies the
score floor, de-duplication, the namespace guard and the per-document
diversity cap.
"""

import logging

from src.rag.embedder import EmbeddingProvider
from src.rag.models import QueryPlan, RetrievalMatch, VectorMatch
from src.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)


def _to_retrieval_match(match: VectorMatch) -> RetrievalMatch:
    metadata = dict(match.metadata)
    text = metadata.pop("text", "")
    document_id = metadata.get("document_id") or match.id.rsplit("_", 1)[0]
    return RetrievalMatch(
        chunk_id=match.id,
        score=min(1.0, max(0.0, float(match.score))),
        text=text,
        metadata=metadata,
        document_id=str(document_id),
        chunk_index=int(metadata.get("chunk_index", 0)),
    )


class Retriever:
    """Semantic retrieval scoped to one namespace per query.

    Over-fetches candidates so that filtering and the diversity cap still
    leave `top_k` results when enough relevant chunks exist.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: EmbeddingProvider,
        default_top_k: int = 5,
        default_min_score: float = 0.7,
        max_matches_per_document: int = 2,
        fetch_multiplier: int = 3,
    ):
        self.vector_store = vector_store
        self.embedder = embedder
        self.default_top_k = default_top_k
        self.default_min_score = default_min_score
        self.max_matches_per_document = max_matches_per_document
        self.fetch_multiplier = fetch_multiplier

    async def retrieve(
        self,
        plan: QueryPlan,
        domain: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[RetrievalMatch]:
        """Retrieve relevant chunks for a planned query.

        Args:
            plan: Planner output (semantic query and filters)
            domain: Namespace to search
            top_k: Max matches to return
            min_score: Minimum similarity score

        Returns:
            Matches sorted by score, possibly empty

        Raises:
            ProviderError: the query could not be embedded
            VectorStoreError: the vector store query failed
        """
        top_k = top_k or self.default_top_k
        min_score = self.default_min_score if min_score is None else min_score

        query_vector = await self.embedder.embed(plan.semantic_query)

        filters = {**plan.filters, "domain": domain}
        raw_matches = await self.vector_store.query(
            domain, query_vector, top_k * self.fetch_multiplier, filters
        )

        results: list[RetrievalMatch] = []
        seen_ids: set[str] = set()
        per_document: dict[str, int] = {}

        for raw in sorted(raw_matches, key=lambda m: m.score, reverse=True):
            match = _to_retrieval_match(raw)

            if match.score < min_score:
                continue
            if match.chunk_id in seen_ids:
                continue

            match_domain = match.metadata.get("domain", match.metadata.get("namespace"))
            if match_domain != domain:
                logger.error(
                    f"[Retriever] Namespace violation: chunk {match.chunk_id} from domain "
                    f"'{match_domain}' returned for '{domain}'; dropping"
                )
                continue

            if per_document.get(match.document_id, 0) >= self.max_matches_per_document:
                continue

            seen_ids.add(match.chunk_id)
            per_document[match.document_id] = per_document.get(match.document_id, 0) + 1
            results.append(match)
            if len(results) >= top_k:
                break

        logger.info(
            f"[Retriever] {len(results)}/{len(raw_matches)} matches kept for "
            f"'{plan.semantic_query[:60]}' in '{domain}' (min_score={min_score})"
        )
        return results
