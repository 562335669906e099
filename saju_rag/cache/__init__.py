"""
Cache module for Redis-based caching.
"""

from saju_rag.cache.redis_client import RedisClient, get_redis_client
from saju_rag.cache.response_cache import QueryCache

__all__ = [
    "RedisClient",
    "get_redis_client",
    "QueryCache",
]
