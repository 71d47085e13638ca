"""
Redis caching utilities for read-heavy calendar queries
Caching is optional: without REDIS_URL every lookup is a miss
"""
import json
import logging
from typing import Any, Optional

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)


def _mask_url(url: str) -> str:
    # Mask password in URL for logging
    if "@" in url:
        url_parts = url.split("@")
        protocol = url_parts[0].split(":")[0]
        return f"{protocol}:****@{url_parts[1]}"
    return "****"


class Cache:
    """Redis cache wrapper with automatic serialization"""

    def __init__(self, url: Optional[str] = None, client=None):
        self.url = url
        self.redis_client = client

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            if not self.url:
                return None
            try:
                logger.info(f"📡 Using Redis URL connection: {_mask_url(self.url)}")
                self.redis_client = redis.from_url(
                    self.url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                )
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except (redis.RedisError, ValueError) as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Set value in cache with TTL (default 5 minutes)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value, default=str))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except (redis.RedisError, TypeError) as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'analytics:ws-1:*')"""
        client = self._get_client()
        if not client:
            return 0

        try:
            keys = client.keys(pattern)
            if keys:
                deleted = client.delete(*keys)
                logger.debug(f"✅ Cache DELETE pattern: {pattern} ({deleted} keys)")
                return deleted
            return 0
        except redis.RedisError as e:
            logger.error(f"❌ Cache delete pattern error for {pattern}: {e}")
            return 0


# Global cache instance
cache = Cache(REDIS_URL)


def build_analytics_key(
    workspace_id: str, start: str, end: str, group_by: Optional[str], agent_id: Optional[str]
) -> str:
    """Build cache key for analytics queries"""
    return f"analytics:{workspace_id}:{start}:{end}:{group_by or 'none'}:{agent_id or 'all'}"


def invalidate_workspace_analytics(workspace_id: str) -> int:
    """Invalidate cached analytics when a workspace's appointments change"""
    return cache.delete_pattern(f"analytics:{workspace_id}:*")
