"""
Async Resilience Utilities
===========================

Soft timeouts and bounded retries for calls to the reasoning service.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from prioritizer.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Injected into the LLM client so tests can swap in a zero-delay policy
    and the loop controller never carries retry logic inline.

    Attributes:
        max_attempts: Total attempts including the first call
        backoff: Base delay in seconds; attempt N waits backoff * 2**(N-1)
        retry_on: Exception types worth retrying
    """

    max_attempts: int = 3
    backoff: float = 1.0
    retry_on: tuple[type[BaseException], ...] = field(
        default=(ServiceUnavailableError, asyncio.TimeoutError)
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff < 0:
            raise ValueError("backoff must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after a failed attempt (1-based)."""
        return self.backoff * (2 ** (attempt - 1))

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or attempts run out."""
        name = getattr(func, "__name__", repr(func))
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt == self.max_attempts:
                    logger.error(
                        f"{name} failed after {self.max_attempts} attempts",
                        extra={"call": name, "error": str(e)}
                    )
                    raise
                wait_time = self.delay_for(attempt)
                logger.warning(
                    f"{name} failed (attempt {attempt}/{self.max_attempts}), retrying in {wait_time}s",
                    extra={"call": name, "attempt": attempt, "wait_time": wait_time}
                )
                await asyncio.sleep(wait_time)
        raise RuntimeError("Unreachable code in RetryPolicy.run")


def with_retry(policy: RetryPolicy) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator form of ``RetryPolicy.run``.

    Example:
        @with_retry(RetryPolicy(max_attempts=3, backoff=2.0))
        async def flaky_api_call():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await policy.run(func, *args, **kwargs)
        return wrapper
    return decorator


def with_soft_timeout(seconds: float) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator that logs a performance warning when a call overruns.

    The call is never cancelled; the budget is an observability target.

    Example:
        @with_soft_timeout(30.0)
        async def call_llm():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            started = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - started
                if elapsed > seconds:
                    logger.warning(
                        f"{func.__name__} exceeded soft timeout ({elapsed:.2f}s > {seconds}s)",
                        extra={"call": func.__name__, "timeout": seconds, "elapsed": elapsed}
                    )
        return wrapper
    return decorator
