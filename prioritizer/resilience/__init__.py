"""Retry and timeout helpers for reasoning service calls."""

from prioritizer.resilience.async_utils import RetryPolicy, with_retry, with_soft_timeout

__all__ = ["RetryPolicy", "with_retry", "with_soft_timeout"]
