# app/services/redis_client.py
"""
Optional Redis connection, used for the reminder run lock.

Nothing correctness-critical lives here: the reminder send log in Postgres
decides what has been delivered. The lock only keeps two overlapping
triggers from doing the same work, so every call degrades to "no lock"
(None) when Redis is unset or unreachable.
"""

import uuid

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 10

# Delete the key only while it still holds our token.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class FastRedisClient:
    def __init__(self, url: str | None = None):
        self.url = url
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._lock_tokens: dict[str, str] = {}

    @property
    def configured(self) -> bool:
        return bool(self.url or settings.REDIS_URL)

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        if self.connected:
            return
        if not self.configured:
            logger.info("Redis not configured, reminder run lock disabled")
            return

        redis_url = self.url or settings.REDIS_URL
        try:
            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
                decode_responses=True,
            )
            client = redis.Redis(connection_pool=self.pool)
            await client.ping()
        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            if self.pool:
                await self.pool.disconnect()
            self.pool = None
            raise RuntimeError("Redis initialization failed") from e

        self.client = client
        logger.info("Redis connected", max_connections=MAX_CONNECTIONS)

    async def close(self) -> None:
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self.client = None
            self.pool = None
            self._lock_tokens.clear()

    async def _connect_if_needed(self) -> bool:
        if not self.connected:
            try:
                await self.initialize()
            except RuntimeError:
                return False
        return self.connected

    async def ping(self) -> bool:
        try:
            if not await self._connect_if_needed():
                return False
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def try_acquire_lock(self, key: str, ttl_s: int) -> bool | None:
        """
        SET NX EX the lock key with a fresh token.

        Returns True when acquired, False when another holder has it, and
        None when Redis is not configured or unreachable.
        """
        if not self.configured:
            return None

        token = uuid.uuid4().hex
        try:
            if not await self._connect_if_needed():
                return None
            acquired = bool(await self.client.set(key, token, nx=True, ex=ttl_s))
        except Exception as e:
            logger.warning("Redis lock unavailable", key=key, error=str(e))
            return None

        if acquired:
            self._lock_tokens[key] = token
        return acquired

    async def release_lock(self, key: str) -> bool:
        """Release a lock this process holds. A lock that expired and was re-taken is left alone."""
        token = self._lock_tokens.pop(key, None)
        if token is None or not self.connected:
            return False

        try:
            deleted = await self.client.eval(_RELEASE_SCRIPT, 1, key, token)
        except Exception as e:
            logger.error("Redis lock release failed", key=key, error=str(e))
            return False

        if not deleted:
            logger.warning("Run lock expired before release", key=key)
        return bool(deleted)


fast_redis = FastRedisClient()
