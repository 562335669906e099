"""
Query-answer caching with knowledge-base version awareness.

Every add/delete/ingest bumps a version counter; cache keys include the
version, so answers computed against an older knowledge base are never
served again.
"""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from saju_rag.cache.redis_client import RedisClient, get_redis_client
from saju_rag.monitoring import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


class QueryCache:
    """Caches ``/api/rag/query`` answers keyed by query and KB version."""

    CACHE_PREFIX = "rag:query:"
    VERSION_KEY = "rag:kb_version"

    def __init__(self, redis_client: Optional[RedisClient] = None, metrics: Optional[MetricsCollector] = None):
        self.redis = redis_client or get_redis_client()
        self.metrics = metrics or get_metrics()

    @staticmethod
    def normalize_query(query: str) -> str:
        """Normalize query for consistent cache keys."""
        normalized = query.lower().strip()
        normalized = re.sub(r"\s+", " ", normalized)
        # \w is unicode-aware, so Hangul survives
        normalized = re.sub(r"[^\w\s\?\.]", "", normalized)
        return normalized

    def _cache_key(self, query: str, version: str) -> str:
        key_content = f"{self.normalize_query(query)}:{version}"
        return f"{self.CACHE_PREFIX}{hashlib.sha256(key_content.encode()).hexdigest()[:32]}"

    async def current_version(self) -> str:
        return await self.redis.get(self.VERSION_KEY) or "0"

    async def bump_version(self) -> None:
        """Invalidate every cached answer."""
        await self.redis.incr(self.VERSION_KEY)

    async def get(self, query: str, version: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return a cached answer for ``query`` or None."""
        if not self.redis.is_connected:
            return None
        if version is None:
            version = await self.current_version()
        cached = await self.redis.get_json(self._cache_key(query, version))
        if cached:
            self.metrics.increment("cache_hits")
            cached.pop("_cached_at", None)
            return cached
        self.metrics.increment("cache_misses")
        return None

    async def set(
        self,
        query: str,
        response: Dict[str, Any],
        ttl: int = None,
        version: Optional[str] = None,
    ) -> bool:
        """
        Cache ``response`` for ``query``.

        ``version`` should be the knowledge-base version read before the
        answer was computed; an answer built while documents changed is then
        stored under the old version and never served.
        """
        if not self.redis.is_connected:
            return False
        if version is None:
            version = await self.current_version()
        cached_response = {**response, "_cached_at": datetime.now(timezone.utc).isoformat()}
        return await self.redis.set_json(self._cache_key(query, version), cached_response, ttl)
