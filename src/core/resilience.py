"""Timeout and retry policy for calls to external services.

Every call to an embedding, completion or vector store backend goes through
`call_with_retry`: each attempt is bounded by `asyncio.wait_for`, transient
failures are retried with exponential backoff and jitter, and an exhausted
policy is converted into the caller's error type.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import openai
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from src.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.NetworkError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def is_transient(exc: BaseException) -> bool:
    """Whether an exception is worth another attempt."""
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    # qdrant-client surfaces HTTP errors with the status code attached
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and (status == 429 or status >= 500)


@dataclass
class RetryPolicy:
    """Per-call timeout and retry budget."""

    timeout_seconds: float = 60.0
    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 20.0
    jitter: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            timeout_seconds=settings.provider_timeout_seconds,
            max_attempts=settings.provider_max_retries,
            initial_backoff=settings.provider_retry_initial_seconds,
            max_backoff=settings.provider_retry_max_seconds,
        )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    description: str,
    error_factory: Callable[[str, int], Exception],
    on_retry: Callable[[int], None] | None = None,
) -> T:
    """Run an async operation under the retry policy.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Timeout and retry budget
        description: Short label used in logs and error messages
        error_factory: Builds the error raised on failure from (message, attempts)
        on_retry: Called with the attempt number before each retry sleep

    Returns:
        The operation's result

    Raises:
        The error built by error_factory once retries are exhausted or a
        non-transient error occurs. CancelledError propagates unchanged.
    """

    def _before_sleep(retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            f"[Retry] {description} attempt {retry_state.attempt_number}/{policy.max_attempts} "
            f"failed ({type(exc).__name__}: {exc}); retrying"
        )
        if on_retry is not None:
            on_retry(retry_state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential_jitter(
            initial=policy.initial_backoff, max=policy.max_backoff, jitter=policy.jitter
        ),
        retry=retry_if_exception(is_transient),
        before_sleep=_before_sleep,
        reraise=False,
    )

    attempts = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise error_factory(
            f"{description} failed after {attempts} attempts: {type(last).__name__}: {last}",
            attempts,
        ) from last
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise error_factory(f"{description} failed: {type(e).__name__}: {e}", attempts) from e
    # AsyncRetrying always returns or raises inside the loop
    raise error_factory(f"{description} produced no result", attempts)
