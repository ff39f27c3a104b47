"""
Redis-backed counters used for rate limiting the mutating endpoints.
"""
from typing import Optional
from redis.exceptions import RedisError
from . import core
import logging

logger = logging.getLogger(__name__)

class CacheManager:
    def __init__(self):
        self.default_ttl = 3600  # 1 hour default TTL

    def _make_key(self, key: str, prefix: str = "") -> str:
        if prefix:
            return f"{prefix}:{key}"
        return key

    async def increment(self, key: str, ttl: int = None, prefix: str = "") -> Optional[int]:
        """Increment atomically; the first hit starts the expiry window"""
        redis = core.get_redis()
        if not redis:
            return None
        cache_key = self._make_key(key, prefix)
        try:
            count = await redis.incr(cache_key)
            if count == 1:
                await redis.expire(cache_key, ttl or self.default_ttl)
            return count
        except RedisError as e:
            logger.error(f"Cache increment failed for key {cache_key}: {str(e)}")
            return None

# Global cache manager instance
cache = CacheManager()

# Rate limiting functions
async def check_rate_limit(user_id: int, action: str, limit: int = 100, window: int = 3600) -> bool:
    """Check if user is within rate limit. Fails open when Redis is down."""
    count = await cache.increment(f"rate_limit:{user_id}:{action}", window, "rate")
    if count is None:
        return True
    return count <= limit
