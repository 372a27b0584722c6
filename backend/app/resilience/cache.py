from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Union


DEFAULT_TTL_SECONDS = 300

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Process-local key/value store with per-entry expiry.

    Expired entries are evicted lazily when read. Concurrent misses on the same key each run
    their compute function; there is no single-flight de-duplication, so the last writer wins.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._store: Dict[Hashable, CacheEntry] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._store)

    def _lookup(self, key: Hashable) -> Any:
        entry = self._store.get(key)
        if entry is None:
            return _MISSING
        if self._clock() > entry.expires_at:
            del self._store[key]
            return _MISSING
        return entry.value

    def get(self, key: Hashable, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def __contains__(self, key: Hashable) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: Hashable, value: Any, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self._store[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)

    def delete(self, key: Hashable) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    async def get_or_set(
        self,
        key: Hashable,
        compute: Callable[[], Union[Any, Awaitable[Any]]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> Any:
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        # compute failures propagate before anything is stored
        value = compute()
        if inspect.isawaitable(value):
            value = await value
        self.set(key, value, ttl_seconds)
        return value

    def expires_at(self, key: Hashable) -> Optional[float]:
        entry = self._store.get(key)
        return entry.expires_at if entry else None
