"""Unit tests for the retry primitives."""

from __future__ import annotations

import asyncio

import pytest

from token_migrator.migration.retry import retry_operation, retry_with_timeout


class Flaky:
    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0
        self.errors: list[Exception] = []

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            error = ConnectionError(f"attempt {self.calls}")
            self.errors.append(error)
            raise error
        return self.result


@pytest.mark.asyncio
async def test_returns_first_success_without_retrying() -> None:
    op = Flaky(failures=0)
    assert await retry_operation(op, 3, 0) == "ok"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_retries_until_success() -> None:
    op = Flaky(failures=2)
    assert await retry_operation(op, 3, 0) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_propagates_last_error_unchanged_after_exact_attempts() -> None:
    op = Flaky(failures=10)
    with pytest.raises(ConnectionError) as excinfo:
        await retry_operation(op, 3, 0)

    assert op.calls == 3
    assert excinfo.value is op.errors[-1]
    assert str(excinfo.value) == "attempt 3"


@pytest.mark.asyncio
async def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        await retry_operation(Flaky(failures=0), 0, 0)


@pytest.mark.asyncio
async def test_retry_with_timeout_counts_timeouts_as_failures() -> None:
    calls = 0

    async def slow_then_fast() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(1)
        return "ready"

    result = await retry_with_timeout(
        slow_then_fast, max_attempts=2, timeout_seconds=0.01, backoff_seconds=0
    )
    assert result == "ready"
    assert calls == 2


@pytest.mark.asyncio
async def test_retry_with_timeout_raises_after_last_attempt() -> None:
    op = Flaky(failures=5)
    with pytest.raises(ConnectionError):
        await retry_with_timeout(op, max_attempts=2, timeout_seconds=1, backoff_seconds=0)
    assert op.calls == 2
