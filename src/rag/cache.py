"""
Query Embedding Cache

Redis cache for question embeddings, keyed by embedding model and a
SHA256 of the normalized question. Any Redis failure is a cache miss;
the cache never fails a query.
"""

import hashlib
import json
import logging
import os

logger = logging.getLogger(__name__)


# ============================================
# Constants
# ============================================

QUERY_EMBEDDING_CACHE = os.environ.get("QUERY_EMBEDDING_CACHE", "0") == "1"
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# Default TTL: 7 days in seconds
DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60

CACHE_KEY_PREFIX = "qemb:"


# ============================================
# Cache Manager
# ============================================


class CacheManager:
    """Caches query embedding vectors in Redis with a TTL.

    Attributes:
        ttl_seconds: Time-to-live for cached embeddings in seconds.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        """Initialize the cache manager.

        Args:
            redis_url: Redis connection URL. If None, uses REDIS_URL env var.
            ttl_seconds: Cache TTL in seconds. Default is 7 days.
        """
        self.ttl_seconds = ttl_seconds
        self._redis_url = redis_url or REDIS_URL
        self._redis: object | None = None

    async def _get_redis(self) -> object:
        """Lazily initialize the Redis connection."""
        if self._redis is None:
            import redis.asyncio as redis

            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def make_key(model: str, question: str) -> str:
        """Build the cache key for a model and question.

        Args:
            model: Embedding model name.
            question: Question text; whitespace and case are normalized.

        Returns:
            Cache key with prefix.
        """
        normalized = " ".join(question.lower().split())
        digest = hashlib.sha256(normalized.encode()).hexdigest()
        return f"{CACHE_KEY_PREFIX}{model}:{digest}"

    async def get(self, model: str, question: str) -> list[float] | None:
        """Return a cached embedding, or None on miss or error."""
        try:
            redis = await self._get_redis()
            cached = await redis.get(self.make_key(model, question))
            if cached:
                return json.loads(cached)
            return None
        except Exception as e:
            logger.debug("Query embedding cache read failed: %s", e)
            return None

    async def set(
        self,
        model: str,
        question: str,
        embedding: list[float],
        ttl: int | None = None,
    ) -> bool:
        """Store an embedding. Returns False instead of raising on error."""
        try:
            redis = await self._get_redis()
            ttl_seconds = ttl if ttl is not None else self.ttl_seconds
            await redis.set(
                self.make_key(model, question), json.dumps(embedding), ex=ttl_seconds
            )
            return True
        except Exception as e:
            logger.debug("Query embedding cache write failed: %s", e)
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.close()
            self._redis = None


def create_cache() -> CacheManager | None:
    """Return a cache when QUERY_EMBEDDING_CACHE=1, else None."""
    if not QUERY_EMBEDDING_CACHE:
        return None
    logger.info("Query embedding cache enabled (%s)", REDIS_URL)
    return CacheManager()
