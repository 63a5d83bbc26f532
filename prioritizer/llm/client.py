"""
LLM Client - Reasoning Service Access
=====================================

Thin async wrapper over the OpenAI and Anthropic SDKs used by the
Generator and Evaluator. Provider errors are translated into the
prioritizer error taxonomy so callers can decide on type alone:

    ServiceUnavailableError  -> retried by the injected RetryPolicy
    ReasoningServiceError    -> surfaced immediately
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from prioritizer.config import PrioritizerSettings, get_settings
from prioritizer.exceptions import ReasoningServiceError, ServiceUnavailableError
from prioritizer.resilience.async_utils import RetryPolicy, with_soft_timeout

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)

_PERMANENT_ERRORS = (
    openai.APIError,
    anthropic.APIError,
)


class Provider(str, Enum):
    """Supported reasoning service providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass
class LLMResponse:
    """Response from the reasoning service."""

    text: str
    provider: Provider
    model: str

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    latency_ms: float = 0.0
    finish_reason: str = "stop"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict."""
        return {
            "text": self.text,
            "provider": self.provider.value,
            "model": self.model,
            "tokens": {
                "prompt": self.prompt_tokens,
                "completion": self.completion_tokens,
                "total": self.total_tokens
            },
            "latency_ms": self.latency_ms
        }


class LLMClient:
    """
    Async chat client for the reasoning service.

    Usage:
        client = LLMClient(provider=Provider.OPENAI)
        await client.initialize()

        response = await client.chat(
            [{"role": "user", "content": "Hello"}],
            model="gpt-4o-mini",
            json_mode=True,
        )
    """

    def __init__(
        self,
        provider: Provider = Provider.OPENAI,
        api_key: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[PrioritizerSettings] = None,
    ):
        """
        Initialize LLM client.

        Args:
            provider: Provider to call
            api_key: API key (auto-loads from env if not provided)
            retry_policy: Backoff strategy for ServiceUnavailableError
            settings: Settings instance (defaults to environment settings)
        """
        self.settings = settings or get_settings()
        self.provider = Provider(provider)
        self.api_key = api_key or self._load_api_key(self.provider)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.service_retry_attempts,
            backoff=self.settings.service_retry_backoff_seconds,
        )

        self.openai_client: Optional[AsyncOpenAI] = None
        self.anthropic_client: Optional[AsyncAnthropic] = None

        self.request_count = 0
        self.total_tokens = 0

    def _load_api_key(self, provider: Provider) -> str:
        """Load API key from environment."""
        env_var = {
            Provider.OPENAI: "OPENAI_API_KEY",
            Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
        }[provider]
        key = os.getenv(env_var)

        if not key:
            logger.warning(f"{env_var} not set, LLM calls will fail")

        return key or ""

    async def initialize(self) -> None:
        """Create the provider SDK client."""
        if self.provider == Provider.OPENAI:
            self.openai_client = AsyncOpenAI(api_key=self.api_key or None)
        else:
            self.anthropic_client = AsyncAnthropic(api_key=self.api_key or None)

        logger.info(f"LLM client initialized (provider: {self.provider.value})")

    async def close(self) -> None:
        """Release HTTP resources. Safe to call more than once."""
        if self.openai_client is not None:
            await self.openai_client.close()
            self.openai_client = None
        if self.anthropic_client is not None:
            await self.anthropic_client.close()
            self.anthropic_client = None

    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Send a chat request, retrying while the service is unavailable.

        Args:
            messages: Chat messages [{"role": "user", "content": "..."}]
            model: Model name
            temperature: Sampling temperature
            max_tokens: Max completion tokens (defaults to settings)
            json_mode: Ask the provider for a JSON object response

        Returns:
            LLMResponse with text and token usage

        Raises:
            ServiceUnavailableError: Service still failing after retries
            ReasoningServiceError: Request rejected by the service
        """
        max_tokens = max_tokens or self.settings.max_tokens
        timed_call = with_soft_timeout(self.settings.call_soft_timeout_seconds)(self._dispatch)

        start_time = time.perf_counter()
        response = await self.retry_policy.run(
            timed_call, messages, model, temperature, max_tokens, json_mode
        )
        response.latency_ms = (time.perf_counter() - start_time) * 1000

        self.request_count += 1
        self.total_tokens += response.total_tokens

        logger.info(
            "LLM chat completed",
            extra={
                "provider": self.provider.value,
                "model": model,
                "tokens": response.total_tokens,
                "latency_ms": response.latency_ms
            }
        )

        return response

    async def _dispatch(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> LLMResponse:
        try:
            if self.provider == Provider.OPENAI:
                return await self._chat_openai(messages, model, temperature, max_tokens, json_mode)
            return await self._chat_anthropic(messages, model, temperature, max_tokens)
        except _TRANSIENT_ERRORS as e:
            raise ServiceUnavailableError(
                f"{self.provider.value} unavailable: {e}", provider=self.provider.value
            ) from e
        except _PERMANENT_ERRORS as e:
            raise ReasoningServiceError(
                f"{self.provider.value} rejected request: {e}", provider=self.provider.value
            ) from e

    async def _chat_openai(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> LLMResponse:
        """Call OpenAI API."""
        if not self.openai_client:
            raise ReasoningServiceError("OpenAI client not initialized", provider="openai")

        extra: dict[str, Any] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}

        completion = await self.openai_client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **extra
        )

        usage = completion.usage
        return LLMResponse(
            text=completion.choices[0].message.content or "",
            provider=Provider.OPENAI,
            model=model,
            prompt_tokens=getattr(usage, "prompt_tokens", 0),
            completion_tokens=getattr(usage, "completion_tokens", 0),
            total_tokens=getattr(usage, "total_tokens", 0),
            finish_reason=completion.choices[0].finish_reason or "stop"
        )

    async def _chat_anthropic(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        """Call Anthropic API."""
        if not self.anthropic_client:
            raise ReasoningServiceError("Anthropic client not initialized", provider="anthropic")

        system_message = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        user_messages = [m for m in messages if m["role"] != "system"]

        kwargs: dict[str, Any] = {}
        if system_message:
            kwargs["system"] = system_message

        message = await self.anthropic_client.messages.create(
            model=model,
            messages=user_messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            text=text,
            provider=Provider.ANTHROPIC,
            model=model,
            prompt_tokens=message.usage.input_tokens,
            completion_tokens=message.usage.output_tokens,
            total_tokens=message.usage.input_tokens + message.usage.output_tokens,
            finish_reason=message.stop_reason or "stop"
        )

    def get_usage_stats(self) -> dict[str, Any]:
        """Request and token counters since construction."""
        return {
            "request_count": self.request_count,
            "total_tokens": self.total_tokens,
        }
