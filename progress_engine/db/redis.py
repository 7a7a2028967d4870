"""Redis connection management.

Redis backs two ephemeral concerns: the read-through cache of course
progress summaries and the notification task queue.  Neither is a
source of truth, so when REDIS_URL is unset both fall back to
in-memory implementations and nothing else changes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from progress_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, cache and queue use in-memory fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        # Serve anyway; progress writes do not depend on Redis.
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
