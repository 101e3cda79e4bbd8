"""
Shared test fixtures and fakes for the RAG test suite.

Provides: Deterministic embedding/completion fakes, in-memory vector store,
fake clock for rate limiters, a fully wired orchestrator
Dependencies: pytest, pytest-asyncio
"""

import json
import re
from datetime import datetime, timedelta, timezone

import pytest

from src.core.rate_limiting import TokenBucket
from src.rag.chunking import Chunker, ChunkingOptions
from src.rag.completion import CompletionResult
from src.rag.errors import ProviderError
from src.rag.memory_store import InMemoryVectorStore
from src.rag.models import Document, DocumentMetadata
from src.rag.orchestrator import RAGOrchestrator
from src.rag.planner import QueryPlanner
from src.rag.retriever import Retriever
from src.rag.synthesizer import ResponseSynthesizer

TEST_DIMENSION = 512

_QUERY_IN_PROMPT = re.compile(r'User Query: "(.*)"', re.DOTALL)


class VocabularyEmbeddingProvider:
    """Bag-of-words embedder; each distinct word gets its own dimension.

    Cosine similarity between two texts is the normalized word overlap, so
    tests can reason about scores exactly.
    """

    model = "test-vocabulary"

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self._vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []

    def _index(self, word: str) -> int:
        if word not in self._vocabulary:
            self._vocabulary[word] = len(self._vocabulary) % self.dimension
        return self._vocabulary[word]

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[self._index(word)] += 1.0
        return vector

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if any(not t.strip() for t in texts):
            raise ProviderError("Cannot embed empty text", provider="embedding")
        return [self._vector(t) for t in texts]


class FakeCompletionProvider:
    """Completion fake: JSON-mode calls plan, plain calls answer.

    The default plan echoes the user query with confidence 0.9.
    """

    def __init__(self, plan: dict | str | None = None, answer: str = "Here is what the context says [1]."):
        self.plan = plan
        self.answer = answer
        self.calls: list[dict] = []
        self.error: Exception | None = None

    async def complete(self, messages, *, temperature=None, max_tokens=None, json_mode=False):
        self.calls.append(
            {"messages": messages, "temperature": temperature, "max_tokens": max_tokens, "json_mode": json_mode}
        )
        if self.error is not None:
            raise self.error

        if json_mode:
            if isinstance(self.plan, str):
                content = self.plan
            elif self.plan is not None:
                content = json.dumps(self.plan)
            else:
                match = _QUERY_IN_PROMPT.search(messages[-1]["content"])
                query = match.group(1) if match else ""
                content = json.dumps({"semanticQuery": query, "filters": {}, "confidence": 0.9})
        else:
            content = self.answer

        return CompletionResult(
            content=content,
            model="fake-model",
            prompt_tokens=10,
            completion_tokens=5,
            latency_ms=1.0,
            finish_reason="stop",
        )


class FakeClock:
    """Manual clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeNow:
    """Manual UTC wall clock for document timestamps."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current += timedelta(**delta)


def make_document(doc_id: str, content: str, domain: str = "fitness", **metadata) -> Document:
    return Document(
        id=doc_id,
        content=content,
        metadata=DocumentMetadata(domain=domain, source=metadata.pop("source", "test"), **metadata),
    )


@pytest.fixture
def embedder():
    return VocabularyEmbeddingProvider()


@pytest.fixture
def completion():
    return FakeCompletionProvider()


@pytest.fixture
def vector_store():
    return InMemoryVectorStore(dimension=TEST_DIMENSION)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_now():
    return FakeNow()


@pytest.fixture
def orchestrator(embedder, completion, vector_store, fake_clock, fake_now):
    """Orchestrator wired with fakes; not yet initialized."""
    return RAGOrchestrator(
        chunker=Chunker(ChunkingOptions()),
        embedder=embedder,
        vector_store=vector_store,
        planner=QueryPlanner(completion),
        retriever=Retriever(vector_store, embedder),
        synthesizer=ResponseSynthesizer(completion),
        ingest_limiter=TokenBucket(
            capacity=10, refill_rate=5, clock=fake_clock, sleep=fake_clock.sleep, name="ingestion"
        ),
        ingest_batch_size=5,
        now=fake_now,
    )


@pytest.fixture
async def ready_orchestrator(orchestrator):
    await orchestrator.initialize()
    yield orchestrator
    await orchestrator.shutdown()
