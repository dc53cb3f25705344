"""Key-expiring store for pending 2FA handles, reset grants, and failed-login counters."""

import asyncio
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from fastapi_multichannel_auth.exceptions import StorageError
from fastapi_multichannel_auth.logging import get_logger

logger = get_logger(__name__)

PENDING_AUTH_NAMESPACE = "pending_auth"
PASSWORD_RESET_NAMESPACE = "password_reset"
FAILED_ATTEMPTS_NAMESPACE = "failed"


def cache_key(namespace: str, suffix: str) -> str:
    """Build a namespaced key such as `pending_auth:<token>`."""
    return f"{namespace}:{suffix}"


def _ttl_seconds(ttl: timedelta) -> int:
    seconds = int(ttl.total_seconds())
    if seconds <= 0:
        raise ValueError("Ephemeral cache entries require a positive TTL")
    return seconds


@contextmanager
def _cache_errors(operation: str) -> Iterator[None]:
    """Translate Redis client failures into `StorageError`."""
    try:
        yield
    except RedisError as e:
        logger.error(
            "storage_failure", backend="redis", operation=operation, error=type(e).__name__
        )
        raise StorageError("Cache backend failure") from e


@runtime_checkable
class EphemeralCache(Protocol):
    """
    Contract for the ephemeral state cache.

    Every entry carries a mandatory time-to-live. Each key namespace has a
    single owning component that writes, reads, and deletes it.
    """

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        """Store a value that disappears after `ttl`."""
        ...

    async def get(self, key: str) -> str | None:
        """Return the live value for a key, or None."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are not an error."""
        ...

    async def pop(self, key: str) -> str | None:
        """Atomically read and delete a key."""
        ...

    async def incr(self, key: str, ttl: timedelta) -> int:
        """Increment a counter, (re)arming its TTL, and return the new value."""
        ...


class MemoryCache:
    """
    In-process ephemeral cache.

    Each entry stores an absolute expiry that is checked on every read, so
    stale entries are never returned even if `purge_expired` is never called.

    Args:
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live_value(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        seconds = _ttl_seconds(ttl)
        async with self._lock:
            self._entries[key] = (value, self._clock() + seconds)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._live_value(key)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def pop(self, key: str) -> str | None:
        async with self._lock:
            value = self._live_value(key)
            self._entries.pop(key, None)
            return value

    async def incr(self, key: str, ttl: timedelta) -> int:
        seconds = _ttl_seconds(ttl)
        async with self._lock:
            current = self._live_value(key)
            count = int(current) + 1 if current is not None else 1
            self._entries[key] = (str(count), self._clock() + seconds)
            return count

    async def purge_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)


class RedisCache:
    """
    Ephemeral cache backed by Redis native key expiry.

    Example:
        ```python
        cache = RedisCache("redis://localhost:6379/0")
        await cache.set("pending_auth:abc", '{"user_id": 1}', timedelta(minutes=10))
        ```
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: aioredis.Redis | None = None,
    ) -> None:
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def set(self, key: str, value: str, ttl: timedelta) -> None:
        with _cache_errors("set"):
            await self.client.set(key, value, ex=_ttl_seconds(ttl))

    async def get(self, key: str) -> str | None:
        with _cache_errors("get"):
            return await self.client.get(key)

    async def delete(self, key: str) -> None:
        with _cache_errors("delete"):
            await self.client.delete(key)

    async def pop(self, key: str) -> str | None:
        with _cache_errors("pop"):
            return await self.client.getdel(key)

    async def incr(self, key: str, ttl: timedelta) -> int:
        with _cache_errors("incr"):
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, _ttl_seconds(ttl))
            count, _ = await pipe.execute()
        return int(count)

    async def close(self) -> None:
        await self.client.aclose()
