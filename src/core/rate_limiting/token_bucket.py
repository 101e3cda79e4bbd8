"""In-process token bucket.

Smooths bursts of work (document batches, provider requests) to a sustained
rate. The clock and sleep callables are injectable so callers and tests can
control time.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from src.core.rate_limiting import RateLimitExceeded

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token bucket with continuous refill.

    Holds up to `capacity` tokens and refills at `refill_rate` tokens per
    second. `acquire` waits until enough tokens are available; waiters are
    served in arrival order.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "bucket",
    ):
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        """Tokens available right now (refilled lazily)."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._updated_at = now

    async def acquire(self, tokens: float = 1) -> float:
        """Take tokens from the bucket, waiting for refill if needed.

        Returns:
            Seconds spent waiting
        """
        if tokens <= 0:
            return 0.0
        if tokens > self.capacity:
            raise RateLimitExceeded(self.name, int(self.capacity), int(self._tokens), 0)

        waited = 0.0
        async with self._lock:
            self._refill()
            while self._tokens < tokens:
                delay = (tokens - self._tokens) / self.refill_rate
                logger.debug(f"[RateLimit] {self.name}: waiting {delay:.3f}s for {tokens} tokens")
                await self._sleep(delay)
                waited += delay
                self._refill()
            self._tokens -= tokens
        return waited
