# src/cache/memory_store.py — v1
"""In-process cache store (default CACHE_BACKEND=memory).

Entries live in a dict and are copied on the way in and out so callers
never share mutable state with the store. Increment is atomic because
it contains no await point.
"""

from __future__ import annotations

import logging
from datetime import datetime

from gen3d.cache.base_cache_store import BaseCacheStore
from gen3d.cache.models import CacheEntry

logger = logging.getLogger(__name__)


class MemoryCacheStore(BaseCacheStore):
    """Dict-backed cache store for single-process deployments and tests."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        return entry.model_copy(deep=True) if entry is not None else None

    async def put(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry.model_copy(deep=True)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def increment_hit(self, key: str, hit_time: datetime) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.hit_count += 1
        entry.last_hit_time = hit_time
        return entry.model_copy(deep=True)

    async def list_entries(self) -> list[CacheEntry]:
        return [e.model_copy(deep=True) for e in list(self._entries.values())]

    async def count(self) -> int:
        return len(self._entries)
