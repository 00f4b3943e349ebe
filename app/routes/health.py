"""
Health check endpoints for the API process and its dependencies.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "swap-proposal-engine"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check covering Redis, the database pool and the expiration sweeper.
    """
    checks = {}
    overall_ok = True

    # 1) Redis (rate limiter backend)
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                }
            )
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 3) Expiration sweeper (only required when enabled in this process)
    if settings.SWAP_EXPIRATION_ENABLED:
        engine = getattr(request.app.state, "swap_engine", None)
        if engine is None:
            checks["expiration_sweeper"] = {"ok": False, "error": "Swap engine not initialized"}
            overall_ok = False
        else:
            sweeper_health = engine.sweeper.health_check()
            checks["expiration_sweeper"] = {
                "ok": sweeper_health["status"] != "unhealthy",
                "status": sweeper_health["status"],
            }
            overall_ok = overall_ok and checks["expiration_sweeper"]["ok"]

    return {
        "overall_ok": overall_ok,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()


@router.get("/health/expiration-sweeper")
async def expiration_sweeper_health(request: Request):
    """Detailed status of the proposal expiration sweeper."""
    engine = getattr(request.app.state, "swap_engine", None)
    if engine is None:
        return {
            "healthy": False,
            "status": "unhealthy",
            "service": "proposal_expiration_sweeper",
            "error": "Swap engine not initialized",
        }
    return engine.sweeper.health_check()
