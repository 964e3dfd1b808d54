# slotswap/routes/health.py
"""
Health check endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from slotswap.config import settings
from slotswap.db.pool import db_health_check
from slotswap.features.swaps.api.dependencies import get_notification_dispatcher
from slotswap.services.redis_client import fast_redis

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "slotswap"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering the configured backends.
    Returns 503 when any required dependency is unhealthy.
    """
    checks = {}
    overall_ok = True

    # 1) Database, only when slots live in Postgres
    if settings.uses_postgres():
        t0 = time.time()
        try:
            db_health = await db_health_check()
            is_healthy = db_health.get("healthy", False)
            checks["database"] = {
                "ok": is_healthy,
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            if "pool_stats" in db_health:
                checks["database"]["pool_stats"] = db_health["pool_stats"]
            if not is_healthy:
                checks["database"]["error"] = db_health.get("error", "Database unhealthy")
            overall_ok = overall_ok and is_healthy
        except Exception as e:
            checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False
    else:
        checks["database"] = {"ok": True, "backend": "memory"}

    # 2) Redis, only for cross-instance notifications
    if settings.uses_redis():
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {
            "ok": redis_ok,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and redis_ok

    checks["notifications"] = {
        "ok": True,
        "backend": settings.NOTIFICATION_BACKEND,
        "connected_users": len(get_notification_dispatcher().registry.connected_user_ids()),
    }

    body = {
        "overall_ok": overall_ok,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
