"""Retry wrapper for awaited collaborator calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AsyncRetryConfig:
    """Linear backoff: attempt ``n`` waits ``backoff_seconds * n`` before the next one."""

    attempts: int = 3
    backoff_seconds: float = 0.5
    retry_on: tuple[type[Exception], ...] = (Exception,)


async def async_with_retry(
    fn: Callable[[], Awaitable[T]],
    config: AsyncRetryConfig | None = None,
    *,
    operation: str = "call",
) -> T:
    """Await ``fn()`` until it succeeds; the last error is re-raised.

    Exceptions outside ``config.retry_on`` propagate immediately.
    """
    cfg = config or AsyncRetryConfig()
    attempt = 0
    while True:
        try:
            return await fn()
        except cfg.retry_on as exc:
            attempt += 1
            if attempt >= cfg.attempts:
                raise
            delay = cfg.backoff_seconds * attempt
            logger.info(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)
