"""API route modules."""

from . import health, rag

__all__ = ["health", "rag"]
