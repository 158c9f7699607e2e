"""Tests for the retry policy.

Tests cover:
- Exact attempt budget (max_attempts retries after the first failure)
- Fixed delay between attempts
- Last error re-raised unchanged
- Counter reset after success
"""

import pytest

from apps.exporter.retry import RetryPolicy
from utils.schemas import RetryConfig


class FlakyOperation:
    """Fails ``failures`` times, then returns ``result``."""

    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0
        self.errors: list[Exception] = []

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            error = ConnectionError(f"failure {self.calls}")
            self.errors.append(error)
            raise error
        return self.result


@pytest.mark.asyncio
async def test_success_on_first_attempt(sleep):
    policy = RetryPolicy("Extraction", RetryConfig(max_attempts=3, delay_ms=500), sleep=sleep)
    operation = FlakyOperation(failures=0)

    assert await policy.call(operation) == "ok"
    assert operation.calls == 1
    assert policy.last_attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_fails_exactly_max_attempts_then_succeeds(sleep):
    policy = RetryPolicy("Extraction", RetryConfig(max_attempts=3, delay_ms=500), sleep=sleep)
    operation = FlakyOperation(failures=3)

    assert await policy.call(operation) == "ok"
    assert operation.calls == 4
    assert policy.last_attempts == 4
    assert sleep.delays == [0.5, 0.5, 0.5]


@pytest.mark.asyncio
async def test_one_failure_too_many_raises_last_error(sleep):
    policy = RetryPolicy("Extraction", RetryConfig(max_attempts=3, delay_ms=500), sleep=sleep)
    operation = FlakyOperation(failures=4)

    with pytest.raises(ConnectionError) as exc_info:
        await policy.call(operation)

    assert exc_info.value is operation.errors[-1]
    assert operation.calls == 4
    assert len(sleep.delays) == 3


@pytest.mark.asyncio
async def test_zero_attempts_means_no_retry(sleep):
    policy = RetryPolicy("Write", RetryConfig(max_attempts=0, delay_ms=500), sleep=sleep)
    operation = FlakyOperation(failures=1)

    with pytest.raises(ConnectionError):
        await policy.call(operation)

    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_counter_resets_after_success(sleep):
    policy = RetryPolicy("Extraction", RetryConfig(max_attempts=2, delay_ms=0), sleep=sleep)

    await policy.call(FlakyOperation(failures=2))
    assert policy.failures == 0

    # Full budget again on the next invocation
    operation = FlakyOperation(failures=2)
    assert await policy.call(operation) == "ok"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_failures_accumulate_without_reset(sleep):
    config = RetryConfig(max_attempts=2, delay_ms=0, reset_on_success=False)
    policy = RetryPolicy("Extraction", config, sleep=sleep)

    await policy.call(FlakyOperation(failures=1))
    assert policy.failures == 1

    operation = FlakyOperation(failures=2)
    with pytest.raises(ConnectionError):
        await policy.call(operation)
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_exhausted_invocation_does_not_shrink_next_budget(sleep):
    policy = RetryPolicy("Extraction", RetryConfig(max_attempts=1, delay_ms=0), sleep=sleep)

    with pytest.raises(ConnectionError):
        await policy.call(FlakyOperation(failures=5))

    operation = FlakyOperation(failures=1)
    assert await policy.call(operation) == "ok"
    assert operation.calls == 2


def test_retry_config_is_immutable():
    config = RetryConfig(max_attempts=1, delay_ms=0)

    with pytest.raises(Exception):
        config.max_attempts = 5
