from __future__ import annotations

import asyncio

import pytest

from backend.app.resilience.cache import TTLCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("k", {"v": 1}, ttl_seconds=10)

    clock.now = 10
    assert cache.get("k") == {"v": 1}

    clock.now = 10.5
    assert cache.get("k") is None
    assert "k" not in cache
    assert len(cache) == 0


def test_get_default_delete_and_clear():
    cache = TTLCache()
    assert cache.get("missing", "fallback") == "fallback"

    cache.set("a", 1)
    cache.set("b", 2)
    cache.delete("a")
    assert "a" not in cache and "b" in cache

    cache.clear()
    assert len(cache) == 0


def test_cached_falsy_values_are_hits():
    calls = []
    cache = TTLCache()

    def compute():
        calls.append(1)
        return []

    assert asyncio.run(cache.get_or_set("empty", compute, 60)) == []
    assert asyncio.run(cache.get_or_set("empty", compute, 60)) == []
    assert len(calls) == 1


def test_get_or_set_awaits_async_compute_and_recomputes_after_expiry():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    calls = []

    async def compute():
        calls.append(clock.now)
        return len(calls)

    assert asyncio.run(cache.get_or_set("k", compute, 5)) == 1
    assert asyncio.run(cache.get_or_set("k", compute, 5)) == 1
    assert cache.expires_at("k") == 5

    clock.now = 6
    assert asyncio.run(cache.get_or_set("k", compute, 5)) == 2


def test_compute_failures_are_not_cached():
    cache = TTLCache()

    async def broken():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get_or_set("k", broken, 60))
    assert "k" not in cache
