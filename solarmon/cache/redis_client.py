"""
Redis client for the latest-value cache.

Caches the per-device "latest sample per sensor" rows under
``latest:{device_id}`` with a short TTL. Every operation is best-effort:
connection failures are logged but never propagate, so ingestion and queries
keep working when Redis is down. When no REDIS_URL is configured the cache is
disabled and every call is a no-op.

CHANGELOG:
- 2026-10-17: Wrap helpers in LatestCache owned by the application lifespan
- 2026-10-17: Initial creation
"""

import json
import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def cache_key(device_id: int) -> str:
    """Return the Redis key holding a device's latest rows."""
    return f"latest:{device_id}"


async def get_redis(url: str) -> redis.Redis:
    """Create and return an async Redis client for *url*.

    Returns:
        redis.Redis: Async Redis client.
    """
    return redis.from_url(url)


class LatestCache:
    """Best-effort cache of latest-value rows per device.

    Attributes:
        url: Redis URL, or None when the cache is disabled.
        ttl_s: Expiry applied to every cached entry.
    """

    def __init__(self, url: str | None, ttl_s: int = 5) -> None:
        self.url = url
        self.ttl_s = ttl_s

    @property
    def enabled(self) -> bool:
        return bool(self.url) and self.ttl_s > 0

    async def get(self, device_id: int) -> list[dict] | None:
        """Return cached rows for *device_id*, or None on miss or failure."""
        if not self.enabled:
            return None
        key = cache_key(device_id)
        try:
            client = await get_redis(self.url)
            try:
                cached = await client.get(key)
            finally:
                await client.aclose()
        except Exception:
            logger.warning(
                "Redis read failed for key %s, falling back to DB",
                key,
                exc_info=True,
            )
            return None
        if cached is None:
            return None
        return json.loads(cached)

    async def set(self, device_id: int, rows: list[dict]) -> None:
        """Store *rows* for *device_id* with the configured TTL."""
        if not self.enabled:
            return
        key = cache_key(device_id)
        try:
            client = await get_redis(self.url)
            try:
                await client.set(key, json.dumps(rows), ex=self.ttl_s)
            finally:
                await client.aclose()
        except Exception:
            logger.warning("Redis write failed for key %s", key, exc_info=True)

    async def invalidate(self, device_id: int) -> None:
        """Delete the cached rows for a device.

        Called after every accepted batch and after catalog changes under
        the device.
        """
        if not self.enabled:
            return
        try:
            client = await get_redis(self.url)
            try:
                await client.delete(cache_key(device_id))
            finally:
                await client.aclose()
        except Exception:
            logger.warning(
                "Failed to invalidate cache for device %s",
                device_id,
                exc_info=True,
            )
