"""Embedding service using OpenAI or Azure OpenAI.

Generates vector embeddings for text chunks and queries.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Protocol

import httpx
import numpy as np
from openai import AsyncAzureOpenAI, AsyncOpenAI

from src.core.config import Settings
from src.core.rate_limiting import RateLimiter, build_rate_limiter
from src.core.resilience import RetryPolicy, call_with_retry
from src.observability.metrics import PROVIDER_RETRIES, record_token_usage
from src.rag.errors import ProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Converts text into fixed-dimension vectors."""

    model: str
    dimension: int

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


@dataclass
class EmbeddingValidation:
    """Sanity check of a single embedding vector."""

    is_valid: bool
    issues: list[str] = field(default_factory=list)
    confidence: float = 1.0


def validate_embedding(text: str, vector: list[float], dimension: int) -> EmbeddingValidation:
    """Check an embedding for wrong dimension, non-finite values and odd norms."""
    issues = []
    confidence = 1.0

    if len(vector) != dimension:
        issues.append(f"Expected {dimension} dimensions, got {len(vector)}")
        confidence -= 0.5

    arr = np.asarray(vector, dtype=float)
    if arr.size and not np.all(np.isfinite(arr)):
        issues.append("Vector contains non-finite values")
        confidence -= 0.5
    else:
        norm = float(np.linalg.norm(arr)) if arr.size else 0.0
        if norm == 0.0:
            issues.append("Vector has zero magnitude")
            confidence -= 0.5
        elif norm < 0.1 or norm > 10.0:
            issues.append(f"Unusual vector magnitude: {norm:.4f}")
            confidence -= 0.2

    if len(text.strip()) < 10:
        issues.append("Very short text may produce a low-quality embedding")
        confidence -= 0.1

    return EmbeddingValidation(
        is_valid=not issues,
        issues=issues,
        confidence=max(0.0, confidence),
    )


class OpenAIEmbeddingProvider:
    """OpenAI / Azure OpenAI embedding service.

    Uses text-embedding-3-small by default for cost-effective embeddings.
    Each request waits on the provider rate limiter and runs under the retry
    policy.
    """

    DEFAULT_MODEL = "text-embedding-3-small"
    BATCH_SIZE = 100  # OpenAI limit per request

    def __init__(
        self,
        client: AsyncOpenAI | AsyncAzureOpenAI,
        model: str = DEFAULT_MODEL,
        dimension: int = 1536,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.client = client
        self.model = model
        self.dimension = dimension
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Raises:
            ProviderError: text is empty or the provider call failed
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in batches.

        Args:
            texts: List of texts to embed

        Returns:
            One embedding vector per input text, in input order
        """
        if not texts:
            return []

        cleaned = [t.strip() if isinstance(t, str) else "" for t in texts]
        empty = [i for i, t in enumerate(cleaned) if not t]
        if empty:
            raise ProviderError(
                f"Cannot embed empty text (positions {empty[:5]})", provider="embedding"
            )

        all_embeddings: list[list[float]] = []
        for batch_start in range(0, len(cleaned), self.BATCH_SIZE):
            batch = cleaned[batch_start : batch_start + self.BATCH_SIZE]
            all_embeddings.extend(await self._embed_request(batch))

        logger.debug(f"[Embedder] Embedded {len(all_embeddings)} texts with {self.model}")
        return all_embeddings

    async def _embed_request(self, batch: list[str]) -> list[list[float]]:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(1)

        response = await call_with_retry(
            lambda: self.client.embeddings.create(input=batch, model=self.model),
            policy=self.retry_policy,
            description=f"Embedding request ({len(batch)} texts)",
            error_factory=lambda msg, attempts: ProviderError(
                msg, provider="embedding", attempts=attempts
            ),
            on_retry=lambda _attempt: PROVIDER_RETRIES.labels("embedding").inc(),
        )

        if len(response.data) != len(batch):
            raise ProviderError(
                f"Embedding response has {len(response.data)} vectors for {len(batch)} texts",
                provider="embedding",
            )

        if response.usage is not None:
            record_token_usage(self.model, response.usage.prompt_tokens)

        vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        for vector in vectors:
            if len(vector) != self.dimension:
                raise ProviderError(
                    f"Embedding has {len(vector)} dimensions; expected {self.dimension}",
                    provider="embedding",
                )
        return vectors

    def validate_embedding(self, text: str, vector: list[float]) -> EmbeddingValidation:
        return validate_embedding(text, vector, self.dimension)


def create_openai_client(settings: Settings) -> AsyncOpenAI | AsyncAzureOpenAI:
    """Create the OpenAI client shared by the embedding and completion providers."""
    # Longer timeout for large batch embedding operations
    timeout = httpx.Timeout(settings.provider_timeout_seconds, connect=30.0)

    if settings.uses_azure:
        logger.info(f"[Embedder] Using Azure OpenAI endpoint '{settings.azure_openai_endpoint}'")
        return AsyncAzureOpenAI(
            api_key=settings.azure_openai_api_key,
            api_version=settings.azure_openai_api_version,
            azure_endpoint=settings.azure_openai_endpoint,
            timeout=timeout,
            max_retries=0,
        )

    if not settings.openai_api_key:
        raise RuntimeError(
            "No OpenAI credentials configured. Set OPENAI_API_KEY or AZURE_OPENAI_ENDPOINT."
        )
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        organization=settings.openai_organization,
        base_url=settings.openai_base_url,
        timeout=timeout,
        # Retries are handled by call_with_retry
        max_retries=0,
    )


def build_embedding_provider(
    settings: Settings, client: AsyncOpenAI | AsyncAzureOpenAI | None = None
) -> OpenAIEmbeddingProvider:
    """Wire the embedding provider from settings."""
    per_second = settings.provider_requests_per_minute / 60
    logger.info(
        f"[Embedder] Initializing embedder with model '{settings.embedding_model}' "
        f"({settings.embedding_dimensions} dims)"
    )
    return OpenAIEmbeddingProvider(
        client=client or create_openai_client(settings),
        model=settings.embedding_model,
        dimension=settings.embedding_dimensions,
        retry_policy=RetryPolicy.from_settings(settings),
        rate_limiter=build_rate_limiter(
            settings, "embedding", per_second, capacity=max(1.0, math.ceil(per_second))
        ),
    )
