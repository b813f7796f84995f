"""Redis connection shared by the lockout and CSRF token stores"""

import logging
from typing import Optional

import redis

from ltipapi.config import get_setting

logger = logging.getLogger(__name__)


class RedisCache:
    """Lazily connected Redis client with bounded connect and socket timeouts.

    Unlike a read-through cache this wrapper does not swallow errors on the
    raw client: callers such as the lockout service depend on seeing every
    failure.
    """

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self._url = url
        self._timeout = timeout
        self._client: Optional[redis.Redis] = None

    def _initialize_client(self):
        redis_url = self._url or get_setting("REDIS_URL")
        timeout = self._timeout or get_setting("REDIS_SOCKET_TIMEOUT", 2.0)
        self._client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            retry_on_timeout=False,
        )
        logger.info("Redis client initialized")

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, initializing it on first use"""
        if self._client is None:
            self._initialize_client()
        return self._client

    def is_available(self) -> bool:
        """Check if Redis is available"""
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis not available: {e}")
        return False


_redis_cache: Optional[RedisCache] = None


def get_redis_cache() -> RedisCache:
    """Get the global Redis cache instance"""
    global _redis_cache
    if _redis_cache is None:
        _redis_cache = RedisCache()
    return _redis_cache
