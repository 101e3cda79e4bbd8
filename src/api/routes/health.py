"""Health check endpoints for Kubernetes probes."""

from datetime import UTC, datetime

import httpx
import redis.asyncio as redis
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from src.core.config import Settings, get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    checks: dict | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat()


async def check_redis(settings: Settings) -> tuple[bool, str]:
    """Check Redis connectivity."""
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True, "healthy"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


async def check_langfuse(settings: Settings) -> tuple[bool, str]:
    """Check Langfuse connectivity."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{settings.langfuse_host}/api/public/health", timeout=5.0)
            if response.status_code == 200:
                return True, "healthy"
            return False, f"unhealthy: status {response.status_code}"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


@router.get("/health/live", response_model=HealthResponse)
async def liveness():
    """Kubernetes liveness probe.

    Returns 200 if the process is alive.
    """
    return HealthResponse(status="alive", timestamp=_now(), version=get_settings().app_version)


@router.get("/health/ready", response_model=HealthResponse)
async def readiness(request: Request):
    """Kubernetes readiness probe.

    Returns 200 once the orchestrator is initialized and its critical
    dependencies respond.
    """
    settings = get_settings()
    orchestrator = getattr(request.app.state, "orchestrator", None)

    checks = {}
    all_healthy = True

    if orchestrator is None or not orchestrator.is_initialized:
        checks["rag"] = "not initialized"
        all_healthy = False
    else:
        checks["rag"] = "initialized"
        vector_ok = await orchestrator.vector_store.health_check()
        checks["vector_store"] = "healthy" if vector_ok else "unhealthy"
        all_healthy = all_healthy and vector_ok

    # Redis only matters when it backs the rate limiters
    if settings.rate_limit_backend == "redis":
        redis_ok, redis_status = await check_redis(settings)
        checks["redis"] = redis_status
        all_healthy = all_healthy and redis_ok

    # Langfuse is non-critical - the service works without it
    if settings.langfuse_public_key:
        _langfuse_ok, langfuse_status = await check_langfuse(settings)
        checks["langfuse"] = langfuse_status

    if not all_healthy:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return HealthResponse(
        status="ready", timestamp=_now(), version=settings.app_version, checks=checks
    )
