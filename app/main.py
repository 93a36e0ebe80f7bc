"""
Event scheduling API.

Serves event occurrences, per-occurrence RSVPs and the daily reminder
trigger. The database pool is required; Redis is opened only when
configured, since it just guards concurrent reminder runs.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.events.api import cron
from app.features.events.api.router import router as events_router
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import health
from app.services.redis_client import fast_redis

setup_logging(log_level="DEBUG" if settings.debug else "INFO")
logger = get_logger(__name__)


def _resources() -> list[tuple[str, object]]:
    """Resources in startup order; shutdown walks the list backwards."""
    resources = [("database_pool", db_pool)]
    if fast_redis.configured:
        resources.append(("redis", fast_redis))
    return resources


async def _close_all(opened: list[tuple[str, object]]) -> list[str]:
    errors = []
    for name, resource in reversed(opened):
        try:
            await resource.close()
            logger.info("Service closed", service=name)
        except Exception as e:
            logger.error("Error closing service", service=name, error=str(e))
            errors.append(f"{name}: {e}")
    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        org_timezone=settings.ORG_TIMEZONE,
    )

    opened: list[tuple[str, object]] = []
    try:
        for name, resource in _resources():
            await resource.initialize()
            opened.append((name, resource))
    except Exception as e:
        logger.error(
            "Failed to initialize services", error=str(e), completed=[n for n, _ in opened]
        )
        await _close_all(opened)
        raise

    logger.info("All services initialized", services=[n for n, _ in opened])

    yield

    logger.info("Application shutting down")
    errors = await _close_all(opened)
    if errors:
        logger.warning("Some services had shutdown errors", errors=errors)


app = FastAPI(
    title="Event Scheduling Service",
    description="Recurring events, per-occurrence RSVPs and idempotent reminders",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(events_router)
app.include_router(cron.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    log_request(
        request.method,
        request.url.path,
        response.status_code,
        round((time.perf_counter() - started) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
