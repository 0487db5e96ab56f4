"""Bounded TTL cache for assistant search results.

One instance is built at startup and handed to the tool registry; writes
through the tool executor invalidate the affected (org, module) entries.
Results are permission-filtered, so the caller's user id is part of the key.
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

CacheKey = tuple[str, str, str, str]


class SearchResultCache:
    def __init__(
        self,
        max_entries: int = 256,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, Any]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self.max_entries > 0 and self.ttl_seconds > 0

    @staticmethod
    def key(org_id: str, module: str, user_id: str, query: str) -> CacheKey:
        return (org_id, module, user_id, query.strip().lower())

    def get(self, key: CacheKey) -> Any | None:
        item = self._entries.get(key)
        if item is None:
            self.misses += 1
            return None
        stored_at, value = item
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: CacheKey, value: Any) -> None:
        if not self.enabled:
            return
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, org_id: str, module: str | None = None) -> int:
        stale = [
            k for k in self._entries
            if k[0] == org_id and (module is None or k[1] == module)
        ]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
