"""
Async Redis client singleton with connection pooling.

When Redis is disabled or unreachable every operation degrades to a miss
so the service keeps answering without a cache.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from saju_rag.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis wrapper that turns connection failures into cache misses."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client
        self._connected = client is not None

    async def connect(self) -> bool:
        """Open the connection pool and ping once."""
        if not settings.REDIS_ENABLED:
            logger.info("ℹ️ Redis disabled by configuration. Caching disabled.")
            return False
        try:
            pool = redis.ConnectionPool(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                password=settings.REDIS_PASSWORD,
                decode_responses=True,
                max_connections=50,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            self._client = redis.Redis(connection_pool=pool)
            await self._client.ping()
            logger.info(f"✅ Redis connected: {settings.REDIS_HOST}:{settings.REDIS_PORT}")
            self._connected = True
        except (RedisError, OSError) as e:
            logger.warning(f"⚠️ Redis connection failed: {e}. Caching disabled.")
            self._client = None
            self._connected = False
        return self._connected

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if Redis is available."""
        return self._connected and self._client is not None

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis."""
        if not self.is_connected:
            return None
        try:
            return await self._client.get(key)
        except RedisError as e:
            logger.warning(f"⚠️ Redis GET error: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = None) -> bool:
        """Set value in Redis with optional TTL."""
        if not self.is_connected:
            return False
        try:
            ttl = ttl or settings.CACHE_TTL_SECONDS
            await self._client.setex(key, ttl, value)
            return True
        except RedisError as e:
            logger.warning(f"⚠️ Redis SET error: {e}")
            return False

    async def get_json(self, key: str) -> Optional[Any]:
        """Get and deserialize JSON value."""
        value = await self.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return None

    async def set_json(self, key: str, value: Any, ttl: int = None) -> bool:
        """Serialize and set JSON value."""
        try:
            json_str = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning(f"⚠️ JSON serialization error: {e}")
            return False
        return await self.set(key, json_str, ttl)

    async def incr(self, key: str) -> int:
        """Increment a counter."""
        if not self.is_connected:
            return 0
        try:
            return await self._client.incr(key)
        except RedisError as e:
            logger.warning(f"⚠️ Redis INCR error: {e}")
            return 0


# Module-level singleton
_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get the singleton Redis client instance (connected in the app lifespan)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
