"""Rate limiting package.

Backpressure for outbound work: an in-process token bucket, or a Redis
fixed-window limiter when the budget is shared between processes.
"""

import math
from typing import Protocol

import redis.asyncio as redis

from src.core.config import Settings


class RateLimitExceeded(Exception):
    """Raised when a request can never fit the configured limit."""

    def __init__(self, limit_type: str, limit: int, remaining: int, retry_after: int):
        self.limit_type = limit_type
        self.limit = limit
        self.remaining = remaining
        self.retry_after = retry_after
        super().__init__(f"{limit_type} rate limit exceeded. Retry after {retry_after}s")


class RateLimiter(Protocol):
    """Anything that can make a caller wait for capacity."""

    async def acquire(self, tokens: float = 1) -> float: ...


from src.core.rate_limiting.redis_window import RedisWindowLimiter  # noqa: E402
from src.core.rate_limiting.token_bucket import TokenBucket  # noqa: E402


def build_rate_limiter(
    settings: Settings,
    scope: str,
    per_second: float,
    capacity: float | None = None,
) -> RateLimiter:
    """Create the limiter configured by `rate_limit_backend`.

    Args:
        settings: Application settings
        scope: Name of the limited resource (used in logs and Redis keys)
        per_second: Sustained rate
        capacity: Largest single acquire; burst size for the local bucket and a
            floor for the Redis window limit (defaults to one second of rate)
    """
    if settings.rate_limit_backend == "redis":
        client = redis.from_url(settings.redis_url)
        limit = max(1, math.floor(per_second * 60), math.ceil(capacity or 0))
        return RedisWindowLimiter(client, scope=scope, limit=limit, window_seconds=60)
    return TokenBucket(
        capacity=capacity if capacity is not None else max(1.0, per_second),
        refill_rate=per_second,
        name=scope,
    )


__all__ = [
    "RateLimitExceeded",
    "RateLimiter",
    "RedisWindowLimiter",
    "TokenBucket",
    "build_rate_limiter",
]
