"""Fixed-window rate limiting using Redis.

Shares a per-minute budget between worker processes: each acquisition adds
to a counter keyed by scope and minute, and waits for the next window when
the budget is spent.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from redis.asyncio import Redis

from src.core.rate_limiting import RateLimitExceeded

logger = logging.getLogger(__name__)


class RedisWindowLimiter:
    """Per-scope limit of `limit` units per window.

    Adapted from the Azure API Management token-limit pattern: usage is a
    Redis counter that expires shortly after its window closes.
    """

    def __init__(
        self,
        redis: Redis,
        scope: str,
        limit: int,
        window_seconds: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.redis = redis
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds
        self._sleep = sleep
        self._clock = clock

    def _window(self) -> tuple[str, int]:
        """Current window key and seconds until it resets."""
        now = self._clock()
        window_index = int(now // self.window_seconds)
        reset_seconds = self.window_seconds - int(now % self.window_seconds)
        return f"ratelimit:{self.scope}:{window_index}", reset_seconds

    async def check_and_consume(self, units: int) -> tuple[bool, int, int]:
        """Consume units from the current window if the budget allows.

        Returns:
            Tuple of (allowed, remaining_units, reset_seconds)
        """
        key, reset_seconds = self._window()

        current_raw = await self.redis.get(key)
        current = int(current_raw) if current_raw else 0
        if current + units > self.limit:
            return False, max(0, self.limit - current), reset_seconds

        pipe = self.redis.pipeline()
        pipe.incrby(key, units)
        pipe.expire(key, self.window_seconds + 10)  # Small buffer
        new_total, _ = await pipe.execute()

        # Another worker may have raced us past the limit; give the units back
        if new_total > self.limit:
            await self.redis.decrby(key, units)
            return False, 0, reset_seconds

        return True, max(0, self.limit - new_total), reset_seconds

    async def acquire(self, units: float = 1) -> float:
        """Consume units, waiting for later windows while the budget is spent.

        Returns:
            Seconds spent waiting

        Raises:
            RateLimitExceeded: units exceed the whole per-window budget
        """
        units = int(units)
        if units <= 0:
            return 0.0
        if units > self.limit:
            raise RateLimitExceeded(self.scope, self.limit, self.limit, self.window_seconds)

        waited = 0.0
        while True:
            allowed, remaining, reset_seconds = await self.check_and_consume(units)
            if allowed:
                return waited
            logger.debug(
                f"[RateLimit] {self.scope}: {remaining}/{self.limit} left, waiting {reset_seconds}s"
            )
            await self._sleep(reset_seconds)
            waited += reset_seconds

    async def get_usage(self) -> dict:
        """Current window usage."""
        key, reset_seconds = self._window()
        current_raw = await self.redis.get(key)
        current = int(current_raw) if current_raw else 0
        return {
            "scope": self.scope,
            "used": current,
            "limit": self.limit,
            "remaining": max(0, self.limit - current),
            "reset_seconds": reset_seconds,
            "checked_at": datetime.now(UTC).isoformat(),
        }
