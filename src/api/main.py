"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from src.api.routes import health, rag
from src.core.config import Settings, get_settings
from src.core.logging import configure_logging
from src.rag.orchestrator import RAGOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, orchestrator: RAGOrchestrator | None = None
) -> FastAPI:
    """Build the application.

    Args:
        settings: Application settings (defaults to the cached settings)
        orchestrator: Pre-built orchestrator; built from settings at startup if omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        configure_logging(settings)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")

        rag_system = orchestrator or build_orchestrator(settings)
        await rag_system.initialize()
        app.state.orchestrator = rag_system
        logger.info("Startup complete - ready to accept requests")

        yield

        logger.info("Shutting down...")
        await rag_system.shutdown()
        app.state.orchestrator = None
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Domain-partitioned retrieval-augmented generation API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": {
                    "kind": "ValidationError",
                    "message": "; ".join(
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                        for err in exc.errors()
                    ),
                }
            },
        )

    # Health check routes
    app.include_router(health.router, tags=["Health"])

    # API routes
    app.include_router(rag.router, prefix=settings.api_prefix, tags=["RAG"])

    # Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs" if settings.debug else None,
            "health": "/health/ready",
        }

    return app


app = create_app()
