# app/routes/health.py
"""
Liveness and readiness checks.

/readyz reports each dependency separately. The reminder job needs the
database and a notification service; Redis only counts when configured.
"""

import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.redis_client import fast_redis

router = APIRouter()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


async def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db_health = await db_health_check()
    except Exception as e:
        check = {"ok": False, "error": f"{type(e).__name__}: {e}", "latency_ms": _elapsed_ms(started)}
        log_health_check("database", False, check["latency_ms"], check["error"])
        return check

    healthy = db_health.get("healthy", False)
    check = {"ok": healthy, "latency_ms": _elapsed_ms(started)}
    pool_stats = db_health.get("pool_stats")
    if pool_stats:
        check.update(pool_stats)
        check["connection_time_ms"] = db_health.get("connection_time_ms", 0)
    if "warnings" in db_health:
        check["warnings"] = db_health["warnings"]
    if not healthy:
        check["error"] = db_health.get("error", "Database unhealthy")

    log_health_check("database", healthy, check["latency_ms"], check.get("error"))
    return check


async def _check_redis() -> dict:
    if not fast_redis.configured:
        return {"ok": True, "configured": False}

    started = time.perf_counter()
    ok = await fast_redis.ping()
    check = {"ok": ok, "configured": True, "latency_ms": _elapsed_ms(started)}
    log_health_check("redis", ok, check["latency_ms"], None if ok else "ping failed")
    return check


def _check_configuration() -> dict:
    issues = []
    if not settings.NOTIFICATION_SERVICE_URL:
        issues.append("NOTIFICATION_SERVICE_URL not set")
    try:
        ZoneInfo(settings.ORG_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        issues.append(f"ORG_TIMEZONE '{settings.ORG_TIMEZONE}' is not a known time zone")

    return {
        "ok": not issues,
        "issues": issues or None,
        "environment": settings.environment,
        "reminders": settings.get_reminder_config(),
    }


@router.get("/healthz")
async def healthz():
    """Process is up; no dependency checks."""
    return {"status": "ok", "service": "event-scheduling"}


@router.get("/readyz")
async def readyz():
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
        "configuration": _check_configuration(),
    }
    overall_ok = all(check["ok"] for check in checks.values())
    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Raw pool statistics."""
    return await db_health_check()
