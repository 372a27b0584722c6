from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.models import CircuitBreakerState
from backend.app.resilience.circuit_breaker import BreakerState
from backend.app.resilience.durable_breaker import DurableCircuitBreaker
from backend.app.resilience.errors import CircuitOpenError


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _failing_action(calls):
    async def action(*args):
        calls.append(args)
        raise RuntimeError("anthropic down")

    return action


def test_first_use_creates_closed_record(session_factory, sqlite_session):
    breaker = DurableCircuitBreaker("anthropic", session_factory, clock=FakeClock())

    record = breaker.get_state()

    assert record.state is BreakerState.CLOSED
    row = sqlite_session.get(CircuitBreakerState, "anthropic")
    assert row is not None
    assert row.failure_count == 0


def test_fire_passes_arguments_to_bound_action(session_factory):
    async def action(prompt, *, suffix=""):
        return prompt + suffix

    breaker = DurableCircuitBreaker("anthropic", session_factory, action=action, clock=FakeClock())

    assert asyncio.run(breaker.fire("hello", suffix="!")) == "hello!"
    assert breaker.get_state().state is BreakerState.CLOSED


def test_state_survives_new_instances(session_factory):
    clock = FakeClock()
    calls = []
    first = DurableCircuitBreaker("anthropic", session_factory, action=_failing_action(calls), clock=clock)

    for _ in range(3):
        with pytest.raises(RuntimeError):
            asyncio.run(first.fire("prompt"))

    # a fresh instance, as after a restart or in another worker
    second = DurableCircuitBreaker("anthropic", session_factory, action=_failing_action(calls), clock=clock)
    record = second.get_state()
    assert record.state is BreakerState.OPEN
    assert record.failure_count == 3
    assert record.next_attempt_at == clock.now + timedelta(seconds=10)

    with pytest.raises(CircuitOpenError):
        asyncio.run(second.fire("prompt"))
    assert len(calls) == 3
    assert second.allows_request() is False


def test_half_open_success_closes_with_single_success(session_factory):
    clock = FakeClock()
    breaker = DurableCircuitBreaker("anthropic", session_factory, action=_failing_action([]), clock=clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            asyncio.run(breaker.fire())

    clock.now += timedelta(seconds=10)

    async def ok():
        return "recovered"

    assert asyncio.run(breaker.execute(ok)) == "recovered"
    snap = breaker.snapshot()
    assert snap["state"] == "CLOSED"
    assert snap["failure_count"] == 0


def test_half_open_failure_reopens(session_factory):
    clock = FakeClock()
    breaker = DurableCircuitBreaker("anthropic", session_factory, action=_failing_action([]), clock=clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            asyncio.run(breaker.fire())

    clock.now += timedelta(seconds=11)
    with pytest.raises(RuntimeError):
        asyncio.run(breaker.fire())

    record = breaker.get_state()
    assert record.state is BreakerState.OPEN
    assert record.next_attempt_at == clock.now + timedelta(seconds=10)


def test_fire_without_action_is_a_type_error(session_factory):
    breaker = DurableCircuitBreaker("stripe", session_factory)
    with pytest.raises(TypeError):
        asyncio.run(breaker.fire())


def test_half_open_admits_a_single_trial_at_a_time(session_factory):
    clock = FakeClock()
    breaker = DurableCircuitBreaker("anthropic", session_factory, action=_failing_action([]), clock=clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            asyncio.run(breaker.fire())
    clock.now += timedelta(seconds=10)

    async def scenario():
        release = asyncio.Event()
        calls = []

        async def slow_trial():
            calls.append("trial")
            await release.wait()
            return "trial"

        async def second():
            calls.append("second")
            return "second"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        while not calls:
            await asyncio.sleep(0.01)
        assert breaker.allows_request() is False
        with pytest.raises(CircuitOpenError):
            await breaker.execute(second)
        release.set()
        return await trial, calls

    result, calls = asyncio.run(scenario())
    assert result == "trial"
    assert calls == ["trial"]
    assert breaker.get_state().state is BreakerState.CLOSED
    assert breaker.allows_request() is True
