# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Process-wide caches for live database links and query results.

Components:
    TtlCache: Key/value map with per-entry expiry and an eviction hook.
    SingleFlight: Per-key memoization of in-flight coroutines, so that
        concurrent misses on the same key await one population.

Example:
    Populate a cache without racing::

        links = TtlCache(default_ttl=300, on_evict=schedule_close)
        flight = SingleFlight()

        async def get(key):
            cached = links.get(key)
            if cached is not None:
                return cached
            return await flight.run(key, lambda: open_and_store(key))
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
T = TypeVar("T")


@dataclass
class CacheEntry(Generic[V]):
    """Cached value with issue and expiry timestamps (clock seconds)."""

    value: V
    issued_at: float
    expires_at: float


class TtlCache(Generic[K, V]):
    """Map whose entries expire after a time-to-live.

    Expired entries are evicted lazily on access (or via purge_expired()).
    on_evict(key, value) is called for every entry that leaves the cache
    because it expired, was replaced, was evicted or the cache was cleared.
    pop() hands the value back to the caller without calling on_evict.

    Args:
        default_ttl: TTL in seconds used when set() gets no explicit ttl.
        clock: Monotonic clock returning seconds. Injectable for tests.
        on_evict: Optional callback for discarded entries.
    """

    def __init__(
        self,
        default_ttl: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Callable[[K, V], Any] | None = None,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._on_evict = on_evict
        self._entries: dict[K, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def keys(self) -> list[K]:
        return list(self._entries)

    def _discard(self, key: K) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None and self._on_evict is not None:
            self._on_evict(key, entry.value)

    def entry(self, key: K) -> CacheEntry[V] | None:
        """Return the live entry for key, evicting it first if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._discard(key)
            return None
        return entry

    def get(self, key: K) -> V | None:
        """Return the live value for key or None."""
        entry = self.entry(key)
        return entry.value if entry is not None else None

    def set(self, key: K, value: V, ttl: float | None = None) -> None:
        """Store value under key. A previous different value is evicted."""
        previous = self._entries.get(key)
        if previous is not None and previous.value is not value:
            self._discard(key)
        now = self._clock()
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(value, now, now + lifetime)

    def pop(self, key: K) -> V | None:
        """Remove key and return its value (expired or not) without on_evict."""
        entry = self._entries.pop(key, None)
        return entry.value if entry is not None else None

    def evict(self, predicate: Callable[[K], bool]) -> int:
        """Evict every key matching predicate. Returns the number evicted."""
        matched = [key for key in self._entries if predicate(key)]
        for key in matched:
            self._discard(key)
        return len(matched)

    def purge_expired(self) -> int:
        """Evict every expired entry. Returns the number evicted."""
        now = self._clock()
        return self.evict(lambda key: now >= self._entries[key].expires_at)

    def clear(self) -> int:
        """Evict everything."""
        return self.evict(lambda _key: True)


class SingleFlight:
    """Memoize one in-flight coroutine per key.

    The first caller for a key starts factory() as a task; callers arriving
    while it runs await the same task. Callers are shielded, so one caller
    being cancelled does not cancel the shared population.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task[Any]] = {}

    def __contains__(self, key: Hashable) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._forget(k, done))
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]


__all__ = ["CacheEntry", "SingleFlight", "TtlCache"]
