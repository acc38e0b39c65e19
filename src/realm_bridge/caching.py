"""
realm_bridge.caching

Process-local caching primitives shared by the identity and token caches.

Responsibilities:
- Per-entry TTL cache with an injectable clock (tests control time).
- Per-key asyncio locks so remote side effects for one key are serialized.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Hashable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: datetime


class TTLCache(Generic[K, V]):
    """Small in-memory TTL cache; every entry carries its own lifetime."""

    def __init__(self, *, clock: Clock = utcnow, maxsize: int = 10_000) -> None:
        self._clock = clock
        self._maxsize = maxsize
        self._store: dict[K, _Entry[V]] = {}

    def get(self, key: K) -> V | None:
        e = self._store.get(key)
        if e is None:
            return None
        if e.expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return e.value

    def set(self, key: K, value: V, ttl: timedelta) -> None:
        if ttl <= timedelta(0):
            return
        if key not in self._store and len(self._store) >= self._maxsize:
            self._evict()
        self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def pop(self, key: K) -> V | None:
        e = self._store.pop(key, None)
        return e.value if e is not None else None

    def items(self) -> Iterator[tuple[K, V]]:
        now = self._clock()
        for k, e in list(self._store.items()):
            if e.expires_at > now:
                yield k, e.value

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return sum(1 for _ in self.items())

    def _evict(self) -> None:
        # Drop expired entries first, otherwise the oldest inserted key.
        now = self._clock()
        for k in [k for k, e in self._store.items() if e.expires_at <= now]:
            self._store.pop(k, None)
        if len(self._store) >= self._maxsize:
            self._store.pop(next(iter(self._store)), None)


class KeyedLocks(Generic[K]):
    """
    One asyncio.Lock per key. Callers hold the lock around "check cache, call remote,
    populate cache" so concurrent misses for the same key coalesce into one remote call.
    """

    def __init__(self) -> None:
        self._locks: dict[K, asyncio.Lock] = {}

    def __call__(self, key: K) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


# --- Module Notes -----------------------------------------------------------
# Both primitives assume a single event loop. Lock objects are kept for the process
# lifetime; the key space is bounded by the number of (subject, realm) pairs seen.
