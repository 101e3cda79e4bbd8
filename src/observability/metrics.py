"""Prometheus metrics for the RAG pipeline.

Tracks ingestion outcomes, per-stage latency, non-fatal notices, provider
retries and token usage (with an estimated cost per model).
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from prometheus_client import Counter, Gauge, Histogram

DOCUMENTS_INGESTED = Counter(
    "rag_documents_ingested_total",
    "Document lifecycle operations by outcome",
    ["status"],  # added, updated, removed, failed
)

CHUNKS_UPSERTED = Counter(
    "rag_chunks_upserted_total",
    "Chunk vectors written to the vector store",
    ["namespace"],
)

QUERIES_TOTAL = Counter(
    "rag_queries_total",
    "Queries answered, by outcome",
    ["outcome"],  # ok, error
)

STAGE_LATENCY = Histogram(
    "rag_stage_duration_seconds",
    "Pipeline stage latency in seconds",
    ["stage"],  # planning, retrieval, synthesis, chunking, embedding, upsert
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

STAGE_NOTICES = Counter(
    "rag_stage_notices_total",
    "Non-fatal stage conditions",
    ["kind"],
)

STAGE_FAILURES = Counter(
    "rag_stage_failures_total",
    "Fatal stage failures",
    ["stage", "kind"],
)

PROVIDER_RETRIES = Counter(
    "rag_provider_retries_total",
    "Retried calls to external services",
    ["operation"],
)

TOKENS_TOTAL = Counter(
    "rag_tokens_total",
    "Tokens consumed",
    ["model", "token_type"],  # token_type: input, output
)

COST_TOTAL = Counter(
    "rag_cost_usd_total",
    "Estimated provider cost in USD",
    ["model"],
)

ACTIVE_QUERIES = Gauge(
    "rag_active_queries",
    "Queries currently in flight",
)


@dataclass
class ModelPricing:
    """Pricing per 1K tokens for a model."""

    input_per_1k: float
    output_per_1k: float


# Model pricing (as of 2026-01)
MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input_per_1k=0.0025, output_per_1k=0.01),
    "gpt-4o-mini": ModelPricing(input_per_1k=0.00015, output_per_1k=0.0006),
    "gpt-4-turbo": ModelPricing(input_per_1k=0.01, output_per_1k=0.03),
    "text-embedding-3-small": ModelPricing(input_per_1k=0.00002, output_per_1k=0.0),
    "text-embedding-3-large": ModelPricing(input_per_1k=0.00013, output_per_1k=0.0),
}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimated cost in USD; unknown models are priced like gpt-4o."""
    pricing = MODEL_PRICING.get(model, MODEL_PRICING["gpt-4o"])
    return (prompt_tokens / 1000) * pricing.input_per_1k + (
        completion_tokens / 1000
    ) * pricing.output_per_1k


def record_token_usage(model: str, prompt_tokens: int, completion_tokens: int = 0) -> float:
    """Count tokens and estimated cost for one provider call."""
    cost = calculate_cost(model, prompt_tokens, completion_tokens)
    TOKENS_TOTAL.labels(model, "input").inc(prompt_tokens)
    if completion_tokens:
        TOKENS_TOTAL.labels(model, "output").inc(completion_tokens)
    COST_TOTAL.labels(model).inc(cost)
    return cost


@contextmanager
def stage_timer(stage: str, timings: dict[str, int] | None = None) -> Iterator[None]:
    """Time a pipeline stage.

    Usage:
        with stage_timer("retrieval", timings):
            matches = await retriever.retrieve(...)

    The duration is observed even when the stage raises; `timings[stage]`
    receives the elapsed milliseconds.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        STAGE_LATENCY.labels(stage).observe(elapsed)
        if timings is not None:
            timings[stage] = int(elapsed * 1000)
