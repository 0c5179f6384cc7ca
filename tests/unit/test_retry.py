"""Unit tests for async retry helpers."""

from __future__ import annotations

import pytest

from chatrelay.resilience.retry import AsyncRetryConfig, async_with_retry


@pytest.mark.anyio
async def test_retries_until_success() -> None:
    calls = 0

    async def _flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ConnectionError("nope")
        return "ok"

    result = await async_with_retry(_flaky, AsyncRetryConfig(attempts=3, backoff_seconds=0))

    assert result == "ok"
    assert calls == 3


@pytest.mark.anyio
async def test_last_error_is_raised() -> None:
    calls = 0

    async def _broken() -> None:
        nonlocal calls
        calls += 1
        raise ValueError("still broken")

    with pytest.raises(ValueError, match="still broken"):
        await async_with_retry(_broken, AsyncRetryConfig(attempts=2, backoff_seconds=0))
    assert calls == 2


@pytest.mark.anyio
async def test_unlisted_errors_are_not_retried() -> None:
    calls = 0

    async def _bad_input() -> None:
        nonlocal calls
        calls += 1
        raise KeyError("missing")

    config = AsyncRetryConfig(attempts=3, backoff_seconds=0, retry_on=(ConnectionError,))
    with pytest.raises(KeyError):
        await async_with_retry(_bad_input, config, operation="lookup")
    assert calls == 1
