"""FastAPI dependency injection.

Provides common dependencies for API routes.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.rag.orchestrator import RAGOrchestrator


def get_orchestrator(request: Request) -> RAGOrchestrator:
    """The orchestrator created in the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"kind": "NotInitializedError", "message": "RAG system not initialized"},
        )
    return orchestrator


# Type alias for cleaner signatures
Orchestrator = Annotated[RAGOrchestrator, Depends(get_orchestrator)]
