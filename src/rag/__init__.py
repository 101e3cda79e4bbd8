"""RAG (Retrieval-Augmented Generation) package.

Components:
- Chunker: Hierarchical document chunking with overlap
- EmbeddingProvider: OpenAI / Azure OpenAI embedding service
- CompletionProvider: OpenAI / Azure OpenAI chat completions
- VectorStore: Qdrant (or in-memory) namespace-partitioned index
- QueryPlanner: Query rewriting and metadata filters
- Retriever: Semantic search within a domain
- ResponseSynthesizer: Context assembly and answer generation
- RAGOrchestrator: Document lifecycle and query pipeline
"""

from src.rag.chunking import Chunk, Chunker, ChunkingOptions, get_chunker
from src.rag.completion import CompletionProvider, CompletionResult, OpenAICompletionProvider
from src.rag.embedder import EmbeddingProvider, OpenAIEmbeddingProvider
from src.rag.errors import (
    ChunkingError,
    NotInitializedError,
    PlanningDegraded,
    ProviderError,
    RAGError,
    RetrievalEmpty,
    SynthesisError,
    VectorStoreError,
)
from src.rag.memory_store import InMemoryVectorStore
from src.rag.models import (
    BatchIngestionResult,
    Document,
    DocumentMetadata,
    IngestionResult,
    QueryOptions,
    QueryPlan,
    RAGResult,
    RetrievalMatch,
    SystemStatus,
)
from src.rag.orchestrator import RAGOrchestrator, build_orchestrator
from src.rag.planner import QueryPlanner
from src.rag.retriever import Retriever
from src.rag.synthesizer import ResponseSynthesizer
from src.rag.vector_store import QdrantVectorStore, VectorStore

__all__ = [
    "BatchIngestionResult",
    "Chunk",
    "Chunker",
    "ChunkingError",
    "ChunkingOptions",
    "CompletionProvider",
    "CompletionResult",
    "Document",
    "DocumentMetadata",
    "EmbeddingProvider",
    "InMemoryVectorStore",
    "IngestionResult",
    "NotInitializedError",
    "OpenAICompletionProvider",
    "OpenAIEmbeddingProvider",
    "PlanningDegraded",
    "ProviderError",
    "QdrantVectorStore",
    "QueryOptions",
    "QueryPlan",
    "QueryPlanner",
    "RAGError",
    "RAGOrchestrator",
    "RAGResult",
    "ResponseSynthesizer",
    "RetrievalEmpty",
    "RetrievalMatch",
    "Retriever",
    "SynthesisError",
    "SystemStatus",
    "VectorStore",
    "VectorStoreError",
    "build_orchestrator",
    "get_chunker",
]
