"""Injected per-user cache for recall strategy results.

Entries are keyed by (strategy id, user id, limit, filters) and expire after a
fixed TTL. Results for a user can be stale until the entry expires or the owner of
the cache calls `invalidate_user` (e.g. after an embedding rebuild).
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from feed_recall.recall.registry import RecallStrategy
from feed_recall.types import ItemCandidate, StrategyId, UserContext

CacheKey = tuple[StrategyId, int, int, tuple[tuple[str, str], ...]]


class RecallCache(Protocol):
    def get(self, key: CacheKey) -> list[ItemCandidate] | None:
        """Return the cached candidates or None when absent/expired."""

    def put(self, key: CacheKey, value: list[ItemCandidate]) -> None:
        """Store candidates under `key`."""

    def invalidate_user(self, user_id: int) -> int:
        """Drop every entry for `user_id`; return how many were dropped."""


class InMemoryRecallCache:
    """Thread-safe TTL cache with oldest-first eviction when full."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, tuple[ItemCandidate, ...]]] = (
            OrderedDict()
        )
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> list[ItemCandidate] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return list(value)

    def put(self, key: CacheKey, value: list[ItemCandidate]) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (self._clock() + self.ttl_seconds, tuple(value))

    def invalidate_user(self, user_id: int) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[1] == user_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CachedRecallStrategy(RecallStrategy):
    """Wraps a strategy so repeated calls for one user hit the cache."""

    def __init__(self, delegate: RecallStrategy, cache: RecallCache) -> None:
        self.delegate = delegate
        self.cache = cache
        self.strategy_id = delegate.strategy_id

    def recall(self, context: UserContext, limit: int) -> list[ItemCandidate]:
        key: CacheKey = (self.strategy_id, context.user_id, limit, _filters_key(context.filters))
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        result = self.delegate.recall(context, limit)
        self.cache.put(key, result)
        return result


def _filters_key(filters: Mapping[str, Any]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(key), repr(value)) for key, value in filters.items()))
