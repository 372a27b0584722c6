from __future__ import annotations

import asyncio

import pytest

from backend.app.config import RetrySettings
from backend.app.resilience.errors import AuthExpiredError, DependencyTimeoutError, RateLimitedError
from backend.app.resilience.retry import backoff_delay, retry_async


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _flaky(*outcomes):
    remaining = list(outcomes)
    calls = []

    async def fn():
        calls.append(1)
        outcome = remaining.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return fn, calls


def test_backoff_grows_exponentially_and_is_capped():
    settings = RetrySettings(initial_delay=1.0, max_delay=10.0, exponential_base=2.0)
    assert [backoff_delay(n, settings) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_transient_failures_are_retried_until_success():
    sleep = Recorder()
    fn, calls = _flaky(DependencyTimeoutError("slow"), RateLimitedError("429"), "done")

    assert asyncio.run(retry_async(fn, sleep=sleep)) == "done"
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


def test_gives_up_after_max_attempts():
    sleep = Recorder()
    fn, calls = _flaky(*(DependencyTimeoutError(f"slow {i}") for i in range(5)))

    with pytest.raises(DependencyTimeoutError, match="slow 2"):
        asyncio.run(retry_async(fn, settings=RetrySettings(max_attempts=3), sleep=sleep))
    assert len(calls) == 3
    assert len(sleep.delays) == 2


def test_non_transient_errors_are_not_retried():
    sleep = Recorder()
    fn, calls = _flaky(AuthExpiredError("ITEM_LOGIN_REQUIRED"), "unreachable")

    with pytest.raises(AuthExpiredError):
        asyncio.run(retry_async(fn, sleep=sleep))
    assert len(calls) == 1
    assert sleep.delays == []


def test_custom_retry_predicate():
    sleep = Recorder()
    fn, calls = _flaky(ValueError("flaky"), "ok")

    result = asyncio.run(retry_async(fn, should_retry=lambda exc: isinstance(exc, ValueError), sleep=sleep))

    assert result == "ok"
    assert len(calls) == 2
