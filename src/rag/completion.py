"""Chat completion service for planning and answer synthesis.

Handles chat completions with OpenAI / Azure OpenAI, including:
- Model-family parameter differences
- Timeout and retry policy
- Langfuse observability
"""

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from langfuse import Langfuse
from openai import AsyncAzureOpenAI, AsyncOpenAI

from src.core.config import Settings
from src.core.rate_limiting import RateLimiter, build_rate_limiter
from src.core.resilience import RetryPolicy, call_with_retry
from src.observability.metrics import PROVIDER_RETRIES, record_token_usage
from src.rag.errors import ProviderError

logger = logging.getLogger(__name__)

# Newer models (gpt-5, o-series) reject temperature and max_tokens
_REASONING_MODEL_MARKERS = ("gpt-5", "o1", "o3")


@dataclass
class CompletionResult:
    """Response from a chat completion."""

    content: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: float
    finish_reason: str | None


class CompletionProvider(Protocol):
    """Produces a chat completion for a list of messages."""

    async def complete(
        self,
        messages: list[dict],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> CompletionResult: ...


def is_reasoning_model(model: str) -> bool:
    return any(marker in model.lower() for marker in _REASONING_MODEL_MARKERS)


class OpenAICompletionProvider:
    """OpenAI / Azure OpenAI chat completions with optional Langfuse tracing."""

    def __init__(
        self,
        client: AsyncOpenAI | AsyncAzureOpenAI,
        model: str = "gpt-4o-mini",
        default_temperature: float = 0.7,
        default_max_tokens: int = 1000,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        langfuse: Langfuse | None = None,
    ):
        self.client = client
        self.model = model
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self._langfuse = langfuse

    def _build_params(
        self, messages: list[dict], temperature: float, max_tokens: int, json_mode: bool
    ) -> dict:
        params = {"model": self.model, "messages": messages}
        if is_reasoning_model(self.model):
            params["max_completion_tokens"] = max_tokens
        else:
            params["temperature"] = temperature
            params["max_tokens"] = max_tokens
        if json_mode:
            params["response_format"] = {"type": "json_object"}
        return params

    def _start_generation(self, messages: list[dict], params: dict):
        if not self._langfuse:
            return None
        try:
            return self._langfuse.start_generation(
                name="rag-completion",
                model=self.model,
                input=messages,
                metadata={"json_mode": "response_format" in params},
            )
        except Exception as e:
            # Tracing must never break the completion call
            logger.warning(f"[Completion] Langfuse generation start failed: {e}")
            return None

    @staticmethod
    def _end_generation(generation, **update) -> None:
        if generation is None:
            return
        try:
            generation.update(**update)
            generation.end()
        except Exception as e:
            logger.warning(f"[Completion] Langfuse generation update failed: {e}")

    async def complete(
        self,
        messages: list[dict],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> CompletionResult:
        """Send a chat completion request.

        Args:
            messages: OpenAI-style role/content messages
            temperature: Sampling temperature (ignored by reasoning models)
            max_tokens: Maximum tokens in response
            json_mode: Ask the model for a JSON object

        Returns:
            CompletionResult with content and usage info

        Raises:
            ProviderError: the call failed after retries
        """
        params = self._build_params(
            messages,
            self.default_temperature if temperature is None else temperature,
            max_tokens or self.default_max_tokens,
            json_mode,
        )

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(1)

        generation = self._start_generation(messages, params)
        start_time = time.perf_counter()

        try:
            response = await call_with_retry(
                lambda: self.client.chat.completions.create(**params),
                policy=self.retry_policy,
                description=f"Completion request ({self.model})",
                error_factory=lambda msg, attempts: ProviderError(
                    msg, provider="completion", attempts=attempts
                ),
                on_retry=lambda _attempt: PROVIDER_RETRIES.labels("completion").inc(),
            )
        except ProviderError as e:
            self._end_generation(generation, level="ERROR", status_message=e.message)
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000

        if not response.choices:
            raise ProviderError("Completion response has no choices", provider="completion")

        choice = response.choices[0]
        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0

        result = CompletionResult(
            content=choice.message.content or "",
            model=response.model or self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            finish_reason=choice.finish_reason,
        )

        record_token_usage(self.model, prompt_tokens, completion_tokens)
        self._end_generation(
            generation,
            output=result.content,
            usage_details={"input": prompt_tokens, "output": completion_tokens},
            metadata={"finish_reason": choice.finish_reason, "latency_ms": latency_ms},
        )

        logger.debug(
            f"[Completion] {self.model} returned {completion_tokens} tokens in {latency_ms:.0f}ms"
        )
        return result


def create_langfuse(settings: Settings) -> Langfuse | None:
    """Create the Langfuse client when keys are configured."""
    if settings.langfuse_public_key and settings.langfuse_secret_key:
        return Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
        )
    return None


def build_completion_provider(
    settings: Settings, client: AsyncOpenAI | AsyncAzureOpenAI
) -> OpenAICompletionProvider:
    """Wire the completion provider from settings."""
    return OpenAICompletionProvider(
        client=client,
        model=settings.completion_model,
        default_temperature=settings.completion_temperature,
        default_max_tokens=settings.completion_max_tokens,
        retry_policy=RetryPolicy.from_settings(settings),
        rate_limiter=build_rate_limiter(
            settings, "completion", settings.provider_requests_per_minute / 60
        ),
        langfuse=create_langfuse(settings),
    )
