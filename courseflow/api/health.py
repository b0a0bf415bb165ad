"""Health and readiness endpoints.

  /health (liveness):  is the process alive?  Always 200; the body reports
                       per-dependency status so a degraded dependency is
                       visible without getting the container restarted.
  /ready (readiness):  can this instance take traffic?  503 when the
                       configured database is unreachable, since no
                       enrollment or attempt operation works without it.
                       Redis is not critical: the queue and cache degrade.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response

from courseflow.db import engine as db_engine
from courseflow.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_status() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        await db_engine.ping_database()
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _redis_status() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _database_status(),
        "redis": await _redis_status(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_status() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
