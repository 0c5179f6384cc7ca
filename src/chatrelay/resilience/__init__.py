"""Resilience helpers."""

from chatrelay.resilience.retry import AsyncRetryConfig, async_with_retry

__all__ = ["AsyncRetryConfig", "async_with_retry"]
