# src/cache/redis_store.py — v2
"""Redis-based cache store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for distributed/multi-instance deployments. Each entry is a hash
holding the JSON document plus ``hit_count`` / ``last_hit_time`` fields so
hits can be recorded with HINCRBY.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from gen3d.cache.base_cache_store import BaseCacheStore
from gen3d.cache.models import CacheEntry

logger = logging.getLogger(__name__)

_KEY_PREFIX = "gen3d:cache:"
_INDEX_KEY = "gen3d:cache:__index__"


class RedisCacheStore(BaseCacheStore):
    """Redis-backed cache store for distributed deployments."""

    def __init__(self, redis_url: str) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)

    def _decode(self, key: str, fields: dict[str, str]) -> CacheEntry | None:
        if not fields or "data" not in fields:
            return None
        try:
            entry = CacheEntry(**json.loads(fields["data"]))
        except Exception as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None
        entry.hit_count = int(fields.get("hit_count", entry.hit_count))
        last_hit = fields.get("last_hit_time")
        entry.last_hit_time = datetime.fromisoformat(last_hit) if last_hit else None
        return entry

    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve cache entry by key."""
        return self._decode(key, self._client.hgetall(f"{_KEY_PREFIX}{key}"))

    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store a cache entry."""
        mapping = {
            "data": entry.model_dump_json(),
            "hit_count": entry.hit_count,
            "last_hit_time": entry.last_hit_time.isoformat() if entry.last_hit_time else "",
        }
        pipe = self._client.pipeline(transaction=True)
        pipe.hset(f"{_KEY_PREFIX}{key}", mapping=mapping)
        # Set of all cache keys for list_entries
        pipe.sadd(_INDEX_KEY, key)
        pipe.execute()

    async def delete(self, key: str) -> bool:
        """Remove a cache entry."""
        removed = self._client.delete(f"{_KEY_PREFIX}{key}")
        self._client.srem(_INDEX_KEY, key)
        return bool(removed)

    async def increment_hit(self, key: str, hit_time: datetime) -> CacheEntry | None:
        redis_key = f"{_KEY_PREFIX}{key}"
        if not self._client.exists(redis_key):
            return None
        pipe = self._client.pipeline(transaction=True)
        pipe.hincrby(redis_key, "hit_count", 1)
        pipe.hset(redis_key, "last_hit_time", hit_time.isoformat())
        pipe.execute()
        return await self.get(key)

    async def list_entries(self) -> list[CacheEntry]:
        """List all cached entries."""
        keys = self._client.smembers(_INDEX_KEY)
        entries: list[CacheEntry] = []
        for key in keys:
            entry = await self.get(key)
            if entry is not None:
                entries.append(entry)
        return entries

    async def count(self) -> int:
        return int(self._client.scard(_INDEX_KEY))

    async def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()
