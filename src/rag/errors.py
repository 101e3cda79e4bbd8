"""RAG pipeline error taxonomy.

Every error carries a `kind` (its class name) and a human-readable message so
callers can surface both without inspecting the exception type.

Fatal:
- NotInitializedError: operation attempted before initialize()
- ChunkingError: malformed or empty document input (fatal to that document)
- ProviderError: embedding/completion call exhausted its retries
- VectorStoreError: upsert/query/delete failure
- SynthesisError: final answer could not be generated

Non-fatal notices (recorded on the result, never raised to callers):
- PlanningDegraded: planner output unusable, fallback plan used
- RetrievalEmpty: no match survived retrieval filters
"""


class RAGError(Exception):
    """Base class for all pipeline errors."""

    fatal = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ChunkingError(RAGError):
    """Raised when a document cannot be split into chunks."""


class ProviderError(RAGError):
    """Raised when an embedding or completion provider call fails for good."""

    def __init__(self, message: str, provider: str = "", attempts: int = 0):
        self.provider = provider
        self.attempts = attempts
        super().__init__(message)


class VectorStoreError(RAGError):
    """Raised when a vector store operation fails."""


class SynthesisError(RAGError):
    """Raised when the answer for a query cannot be generated."""


class PlanningDegraded(RAGError):
    """Planner output could not be used; the fallback plan was applied."""

    fatal = False


class RetrievalEmpty(RAGError):
    """Retrieval produced no usable matches; synthesis runs without context."""

    fatal = False


class NotInitializedError(RAGError):
    """Raised when an operation runs before the system is initialized."""
