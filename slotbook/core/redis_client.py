"""Redis connection and the fail-open JSON cache."""

import json
from collections.abc import Callable
from typing import Any, TypeVar, cast

import redis
import structlog

from slotbook.config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Shared client, built on first use
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create the shared Redis client.

    Returns:
        Redis client configured from settings
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


def close_redis_connection() -> None:
    """Close and forget the shared client."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


async def check_redis_connection() -> bool:
    """Ping Redis; any failure counts as unreachable."""
    try:
        return bool(get_redis_client().ping())
    except Exception:
        return False


class CacheManager:
    """
    JSON cache over Redis, used for catalog listings and processed
    notification keys.

    Every operation fails open: an outage reads as a miss, writes report
    ``False`` and deletes report nothing removed. Callers then fall back to
    the database or to in-memory state.
    """

    def __init__(self, redis_client: redis.Redis):
        """Initialize cache manager with Redis client."""
        self.redis = redis_client

    def _attempt(self, op: str, key: str, call: Callable[[], T], fallback: T) -> T:
        try:
            return call()
        except Exception as e:
            logger.debug("cache_unavailable", op=op, key=key, error=str(e))
            return fallback

    def get(self, key: str) -> str | None:
        """Raw cached value, or None on a miss."""
        return self._attempt("get", key, lambda: cast(str | None, self.redis.get(key)), None)

    def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Store a raw value, expiring after ``ttl`` seconds when given."""

        def write() -> bool:
            if ttl:
                self.redis.setex(key, ttl, value)
            else:
                self.redis.set(key, value)
            return True

        return self._attempt("set", key, write, False)

    def delete(self, key: str) -> bool:
        """Remove a single key."""

        def drop() -> bool:
            self.redis.delete(key)
            return True

        return self._attempt("delete", key, drop, False)

    def get_json(self, key: str) -> Any | None:
        """
        Cached JSON document.

        An entry that no longer parses is dropped and reads as a miss.

        Args:
            key: Cache key

        Returns:
            Decoded document or None
        """
        raw = self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache_entry_unreadable", key=key)
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Store a JSON document.

        Dates, decimals and other non-JSON values are written with ``str``.

        Args:
            key: Cache key
            value: Document to store
            ttl: Time to live in seconds

        Returns:
            True if the write reached Redis
        """
        return self.set(key, json.dumps(value, default=str), ttl)

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern.

        Args:
            pattern: Redis key pattern (e.g., 'catalog:*')

        Returns:
            Number of keys deleted
        """

        def drop() -> int:
            keys = cast(list[str], self.redis.keys(pattern))
            return cast(int, self.redis.delete(*keys)) if keys else 0

        return self._attempt("delete_pattern", pattern, drop, 0)
