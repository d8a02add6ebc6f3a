# src/cache/base_cache_store.py — v2
"""Abstract cache store interface.

Stores are dumb key/value holders for CacheEntry. Expiry, hot-entry rules,
ranking and statistics live in ResultCache; stores only need to provide
an atomic hit increment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from gen3d.cache.models import CacheEntry


class BaseCacheStore(ABC):
    """Unified interface for cache storage backends."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve cache entry by key."""

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store cache entry (upsert)."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove cache entry. Returns True if something was removed."""

    @abstractmethod
    async def increment_hit(self, key: str, hit_time: datetime) -> CacheEntry | None:
        """Atomically add one hit and stamp ``last_hit_time``.

        Returns the updated entry, or None if the key is absent.
        """

    @abstractmethod
    async def list_entries(self) -> list[CacheEntry]:
        """Snapshot of all stored entries."""

    async def count(self) -> int:
        return len(await self.list_entries())

    async def open(self) -> None:
        """Acquire backend resources. No-op by default."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
