# app/db/pool.py
"""
Process-wide PostgreSQL pool for the event store.

One AsyncConnectionPool per process (API or worker). Connections come back
configured with dict rows, UTC session time zone and autocommit, so plain
reads need no transaction; RSVP writes open one explicitly through
`get_db_transaction()`.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATEMENT_TIMEOUT = "30s"
CLOSE_TIMEOUT_SECONDS = 30.0
SATURATION_WARN_PERCENT = 80


class DatabasePoolManager:
    """Lifecycle wrapper around the event store pool."""

    def __init__(self, conninfo: str | None = None):
        self._conninfo = conninfo
        self.pool: AsyncConnectionPool | None = None

    @property
    def ready(self) -> bool:
        return self.pool is not None and not self.pool.closed

    async def initialize(self) -> None:
        """Open the pool and prove one round trip works."""
        if self.ready:
            logger.warning("Database pool already open")
            return

        pool_config = settings.get_db_pool_config()
        logger.info("Opening database pool", host=settings.database_host(), **pool_config)

        pool = AsyncConnectionPool(
            conninfo=self._conninfo or settings.DATABASE_URL,
            open=False,
            configure=self._configure_connection,
            check=AsyncConnectionPool.check_connection,
            **pool_config,
        )
        try:
            await pool.open(wait=True)
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            await pool.close()
            logger.error("Database pool failed to open", error=str(e))
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        logger.info("Database pool ready")

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        app_name = f"event-scheduling-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        # Instance dates are civil dates; keep session arithmetic in UTC.
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def close(self) -> None:
        if not self.ready:
            return
        logger.info("Closing database pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out")
        finally:
            self.pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if not self.ready:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Connection inside one transaction: commit on success, rollback on error.

        Usage:
            async with db_pool.transaction() as conn:
                await conn.execute("SELECT pg_advisory_xact_lock(...)")
                await conn.execute("INSERT INTO event_rsvps ...")
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self.ready:
            return {"healthy": False, "service": "database_pool", "error": "Pool not initialized"}

        try:
            started = time.perf_counter()
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
            connection_time_ms = (time.perf_counter() - started) * 1000
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)
        waiting = stats.get("requests_waiting", 0)
        utilization = (size - available) / size * 100 if size else 0

        health = {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round(connection_time_ms, 2),
            "pool_stats": {
                "pool_size": size,
                "pool_available": available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": waiting,
            },
        }
        warnings = []
        if utilization > SATURATION_WARN_PERCENT:
            warnings.append(f"High pool utilization: {utilization:.1f}%")
        if waiting:
            warnings.append(f"Requests waiting for connections: {waiting}")
        if warnings:
            health["warnings"] = warnings
        return health


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Pooled autocommit connection (async context manager)."""
    return db_pool.connection()


async def get_db_transaction():
    """Pooled connection wrapped in a transaction (async context manager)."""
    return db_pool.transaction()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
