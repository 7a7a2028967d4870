"""Read-through cache for course progress summaries.

    GET  /v1/progress/{user}/courses/{course}
         → cache hit   → return the cached JSON
         → cache miss  → load the ProgressRepo document → populate → return

Two invalidation strategies cover each other:

  1. TTL (PROGRESS_CACHE_TTL): every entry expires on its own, so a
     missed invalidation only serves stale data for a bounded time.
  2. Explicit: the LearningEngine deletes ``progress:{user}:{course}``
     after every successful apply, and ``progress:{user}:*`` when a path
     or streak change could alter what a reader sees.

Only summaries are cached.  Mastery is recomputed on every read.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from progress_engine.core.metrics import CACHE_OPERATIONS
from progress_engine.db.redis import redis_pool


def progress_key(user_id: str, course_id: str) -> str:
    return f"progress:{user_id}:{course_id}"


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on a miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete every key matching a trailing-``*`` glob."""
        ...


class InMemoryCacheService:
    """Process-local cache for dev and tests.  TTL is not enforced.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value
        CACHE_OPERATIONS.labels(operation="set").inc()

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
        CACHE_OPERATIONS.labels(operation="invalidate").inc()

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]
        CACHE_OPERATIONS.labels(operation="invalidate").inc()

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache, shared by every API instance."""

    # Separates cache entries from the task queue lists.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        CACHE_OPERATIONS.labels(operation="set").inc()

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="invalidate").inc()

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN in batches; KEYS would block the server on a large keyspace.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break
        CACHE_OPERATIONS.labels(operation="invalidate").inc()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
