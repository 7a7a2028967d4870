"""Health and readiness endpoints.

  /health (liveness): "is the process alive?"  Always 200; the body says
      whether a backing service is degraded.  A failing liveness probe
      restarts the container, too drastic for a Redis blip.

  /ready (readiness): "can this instance take traffic?"  503 when the
      document store is configured and unreachable, which takes the
      instance out of rotation until it recovers.  Redis is not critical
      here: cache and queue fall back to in-memory.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from progress_engine.db.engine import engine
from progress_engine.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.warning("Database check failed", exc_info=True)
        return "degraded"


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except Exception:
        logger.warning("Redis check failed", exc_info=True)
        return "degraded"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
