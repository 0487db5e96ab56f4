"""TTL key-value backends for conversation memory.

RedisKeyValueStore is used whenever REDIS_URL is configured; the in-process
store serves development and tests, with an injectable clock so expiry can
be exercised without sleeping.
"""

import fnmatch
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...

    async def count(self, pattern: str) -> int: ...

    async def close(self) -> None: ...

class RedisKeyValueStore:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(
            redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
        )

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._client.setex(key, ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._client.expire(key, ttl_seconds))

    async def count(self, pattern: str) -> int:
        total = 0
        async for _ in self._client.scan_iter(match=pattern):
            total += 1
        return total

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryKeyValueStore:
    """Process-local TTL store. Expired keys are dropped on access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        value = self._live(key)
        if value is None:
            return False
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    async def count(self, pattern: str) -> int:
        return sum(
            1 for key in list(self._data)
            if fnmatch.fnmatchcase(key, pattern) and self._live(key) is not None
        )

    async def close(self) -> None:
        self._data.clear()
