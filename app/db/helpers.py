# app/db/helpers.py
"""
Query helpers shared by the event repositories.

Every helper accepts an optional `connection=`; pass the connection from
`get_db_transaction()` to keep a read inside the same transaction as the
writes that depend on it (RSVP capacity checks rely on this).
"""

import asyncio
import functools
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A query against the event store failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    operation: str, query: str, connection: psycopg.AsyncConnection | None
) -> AsyncGenerator[psycopg.AsyncCursor, None]:
    try:
        if connection is not None:
            async with connection.cursor() as cur:
                yield cur
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    yield cur
    except psycopg.Error as e:
        logger.error("Event store query failed", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    async with _cursor("fetch_one", query, connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async with _cursor("fetch_all", query, connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, or None when nothing matched."""
    async with _cursor("fetch_val", query, connection) as cur:
        await cur.execute(query, params)
        row = await cur.fetchone()
    if not row:
        return None
    return next(iter(row.values())) if isinstance(row, dict) else row[0]


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a write and return the affected row count."""
    async with _cursor("execute", query, connection) as cur:
        await cur.execute(query, params)
        return cur.rowcount


TRANSIENT_ERRORS = (psycopg.OperationalError, psycopg.errors.SerializationFailure)
PERMANENT_ERRORS = (psycopg.IntegrityError, psycopg.DataError)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository coroutine on transient failures.

    Dropped connections and serialization failures back off exponentially
    (base_delay, 2x, 4x ...), whether raised directly or wrapped in a
    DatabaseError by the helpers above. Integrity and data errors fail
    immediately. The wrapped coroutine must be safe to re-run from the
    start, which holds for anything that does all its work inside one
    transaction.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except (psycopg.Error, DatabaseError) as e:
                    cause = e.__cause__ if isinstance(e, DatabaseError) else e
                    if isinstance(cause, PERMANENT_ERRORS):
                        logger.error(
                            "Event store operation failed permanently",
                            operation=func.__name__,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Permanent database error: {cause}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from cause
                    if not isinstance(cause, TRANSIENT_ERRORS):
                        raise
                    if attempt == max_retries:
                        logger.error(
                            "Event store operation failed after retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {cause}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from cause
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Event store operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
