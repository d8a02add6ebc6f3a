# src/cache/result_cache.py — v2
"""Result cache: exact and fuzzy lookup over a pluggable store.

ResultCache owns the rules (TTL, hot entries, ranking, capacity, counters);
the store only persists entries. Store failures never propagate: reads
degrade to a miss, writes are retried once and then logged.

Concurrency: no global lock. Hit recording is serialized per key and
delegated to the store's atomic increment. Sweep and eviction work on
snapshots and tolerate entries appearing or vanishing underneath them.
Fuzzy lookup scores a bounded scan of short inputs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, TypeVar

from gen3d.cache import keyer
from gen3d.cache.base_cache_store import BaseCacheStore
from gen3d.cache.models import CacheEntry, CacheMatch, CacheStatistics
from gen3d.core import similarity
from gen3d.core.models import GenerationTask, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def entry_from_task(task: GenerationTask, quality_tier: str | None = None) -> CacheEntry:
    """Build the cache entry a completed task should produce."""
    if task.result is None or task.cache_key is None:
        raise ValueError(f"Task {task.task_id} has no result to cache")
    return CacheEntry(
        cache_key=task.cache_key,
        fingerprint=task.input_hash,
        input_content=task.input_content,
        kind=task.kind,
        quality_tier=quality_tier,
        result=task.result,
        quality_score=task.quality_score,
        source_task_id=task.task_id,
    )


def tier_of_task(task: GenerationTask) -> str | None:
    """Quality tier recorded in a task's serialized generation params."""
    if not task.generation_params:
        return None
    try:
        return keyer.quality_tier(json.loads(task.generation_params))
    except (ValueError, TypeError):
        return None


class ResultCache:
    """Store-agnostic cache of generation results."""

    def __init__(
        self,
        store: BaseCacheStore,
        ttl_hours: float = 168,
        hot_hit_threshold: int = 5,
        max_entries: int = 1000,
        cleanup_target: float = 0.7,
        max_similar_results: int = 50,
        max_similarity_length: int = 1024,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ttl = timedelta(hours=ttl_hours)
        self._hot = hot_hit_threshold
        self._max_entries = max_entries
        self._cleanup_target = cleanup_target
        self._max_similar = max_similar_results
        self._max_similarity_length = max_similarity_length
        self._clock = clock
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._hits = 0
        self._misses = 0
        self._total_bytes = 0

    @classmethod
    def from_settings(cls, store: BaseCacheStore, settings) -> ResultCache:
        return cls(
            store,
            ttl_hours=settings.cache_ttl_hours,
            hot_hit_threshold=settings.cache_hot_hit_threshold,
            max_entries=settings.cache_max_entries,
            cleanup_target=settings.cache_cleanup_target,
            max_similar_results=settings.similarity_max_candidates,
            max_similarity_length=settings.provider_max_prompt_length,
        )

    @property
    def store(self) -> BaseCacheStore:
        return self._store

    @property
    def hot_hit_threshold(self) -> int:
        return self._hot

    # --- internal helpers ---

    async def _read(self, op: str, call: Callable[[], Awaitable[T]], default: T) -> T:
        try:
            return await call()
        except Exception as e:
            logger.warning("Cache %s failed, treating as miss: %s", op, e)
            return default

    async def _write(self, op: str, call: Callable[[], Awaitable[T]]) -> tuple[bool, T | None]:
        for attempt in (1, 2):
            try:
                return True, await call()
            except Exception as e:
                if attempt == 1:
                    logger.debug("Cache %s failed, retrying once: %s", op, e)
                    continue
                logger.warning("Cache %s failed after retry: %s", op, e)
        return False, None

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock

    def _drop_lock(self, key: str) -> None:
        lock = self._key_locks.get(key)
        if lock is not None and not lock.locked():
            del self._key_locks[key]

    def _scan_order(self, entry: CacheEntry) -> tuple[bool, datetime, int, datetime]:
        return (
            entry.is_hot(self._hot),
            entry.last_hit_time or _NEVER,
            entry.hit_count,
            entry.create_time,
        )

    # --- lookup ---

    async def find_exact(self, cache_key: str) -> CacheEntry | None:
        """Live entry stored under ``cache_key``, or None."""
        if keyer.is_fallback_key(cache_key):
            return None
        entry = await self._read("get", lambda: self._store.get(cache_key), None)
        if entry is None:
            return None
        if not entry.is_live(self._clock(), self._hot):
            logger.debug("Cache entry %s expired", cache_key)
            return None
        return entry

    async def find_similar(
        self,
        input_content: str,
        threshold: float,
        kind: str | None = None,
        quality_tier: str | None = None,
    ) -> list[CacheMatch]:
        """Live entries whose input is at least ``threshold`` similar.

        When ``kind`` is given only entries of that kind and of the same
        quality tier are considered. At most ``max_similar_results`` entries
        are scored, hot and recently hit ones first; inputs longer than
        ``max_similarity_length`` on either side are never compared.
        """
        if not input_content or len(input_content) > self._max_similarity_length:
            return []
        entries = await self._read("list", self._store.list_entries, [])
        now = self._clock()
        live = [
            e
            for e in entries
            if e.is_live(now, self._hot)
            and (kind is None or (e.kind == kind and e.quality_tier == quality_tier))
            and len(e.input_content) <= self._max_similarity_length
        ]
        live.sort(key=self._scan_order, reverse=True)
        candidates = [
            (e.input_content, e, e.last_hit_time, e.hit_count) for e in live[: self._max_similar]
        ]
        try:
            ranked = await asyncio.to_thread(similarity.rank, input_content, candidates, threshold)
        except Exception as e:
            logger.warning("Similarity lookup failed, treating as miss: %s", e)
            return []
        return [CacheMatch(entry=m.item, similarity=m.score) for m in ranked]

    # --- mutation ---

    async def put(self, entry: CacheEntry) -> CacheEntry | None:
        """Insert or refresh an entry.

        A key already present keeps its hit count, last hit and creation
        time; only the expiry is pushed out. Returns the stored entry, or
        None if the store could not be written.
        """
        if keyer.is_fallback_key(entry.cache_key):
            logger.debug("Refusing to cache under fallback key %s", entry.cache_key)
            return None

        stored = entry.model_copy(deep=True)
        async with self._lock_for(entry.cache_key):
            now = self._clock()
            existing = await self._read("get", lambda: self._store.get(entry.cache_key), None)
            if existing is not None:
                stored.hit_count = max(existing.hit_count, stored.hit_count)
                stored.last_hit_time = existing.last_hit_time
                stored.create_time = existing.create_time
            else:
                stored.create_time = now
            stored.expire_time = now + self._ttl

            ok, _ = await self._write("put", lambda: self._store.put(stored.cache_key, stored))
        if not ok:
            return None
        self._total_bytes += len(stored.model_dump_json().encode("utf-8"))
        logger.info("Cached result under %s", stored.cache_key)

        if existing is None:
            await self.enforce_capacity()
        return stored

    async def record_hit(self, entry: CacheEntry) -> CacheEntry:
        """Count a hit on ``entry``; returns the updated entry."""
        self._hits += 1
        async with self._lock_for(entry.cache_key):
            ok, updated = await self._write(
                "increment", lambda: self._store.increment_hit(entry.cache_key, self._clock())
            )
        if ok and updated is not None:
            return updated
        self._drop_lock(entry.cache_key)
        return entry

    def record_miss(self, cache_key: str) -> None:
        self._misses += 1
        logger.debug("Cache miss for %s", cache_key)

    async def set_quality(self, cache_key: str, score: float) -> bool:
        """Best-effort write-back of a quality score."""
        async with self._lock_for(cache_key):
            entry = await self._read("get", lambda: self._store.get(cache_key), None)
            if entry is not None:
                entry.quality_score = score
                ok, _ = await self._write("put", lambda: self._store.put(cache_key, entry))
        if entry is None:
            self._drop_lock(cache_key)
            return False
        return ok

    # --- maintenance ---

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Remove expired entries that are not hot. Returns the count removed."""
        now = now or self._clock()
        snapshot = await self._read("list", self._store.list_entries, [])
        removed = 0
        for entry in snapshot:
            if entry.is_expired(now) and not entry.is_hot(self._hot):
                ok, deleted = await self._write(
                    "delete", lambda key=entry.cache_key: self._store.delete(key)
                )
                if ok and deleted:
                    removed += 1
                    self._drop_lock(entry.cache_key)
        if removed:
            logger.info("Swept %d expired cache entries", removed)
        return removed

    async def eviction_candidates(self, n: int) -> list[CacheEntry]:
        """Up to ``n`` entries in eviction order: cold first, then least recently hit."""
        if n <= 0:
            return []
        snapshot = await self._read("list", self._store.list_entries, [])
        snapshot.sort(
            key=lambda e: (e.is_hot(self._hot), e.last_hit_time or _NEVER, e.hit_count)
        )
        return snapshot[:n]

    async def evict_key(self, cache_key: str) -> bool:
        ok, deleted = await self._write("delete", lambda: self._store.delete(cache_key))
        self._drop_lock(cache_key)
        return bool(ok and deleted)

    async def evict(self, n: int) -> int:
        evicted = 0
        for entry in await self.eviction_candidates(n):
            if await self.evict_key(entry.cache_key):
                evicted += 1
        if evicted:
            logger.info("Evicted %d cache entries", evicted)
        return evicted

    async def enforce_capacity(self) -> int:
        """Evict down to ``max_entries * cleanup_target`` once over capacity."""
        count = await self._read("count", self._store.count, 0)
        if count <= self._max_entries:
            return 0
        target = int(self._max_entries * self._cleanup_target)
        logger.info("Cache over capacity (%d > %d), evicting to %d", count, self._max_entries, target)
        return await self.evict(count - target)

    async def warm_up(self, tasks: Iterable[GenerationTask]) -> int:
        """Insert entries for completed tasks missing from the cache."""
        inserted = 0
        for task in tasks:
            if task.status != "COMPLETED" or task.result is None or not task.cache_key:
                continue
            if keyer.is_fallback_key(task.cache_key):
                continue
            if await self.find_exact(task.cache_key) is not None:
                continue
            if await self.put(entry_from_task(task, tier_of_task(task))) is not None:
                inserted += 1
        logger.info("Cache warm-up inserted %d entries", inserted)
        return inserted

    # --- statistics ---

    async def statistics(self) -> CacheStatistics:
        total = await self._read("count", self._store.count, 0)
        lookups = self._hits + self._misses
        return CacheStatistics(
            total_entries=total,
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / lookups if lookups else 0.0,
            total_bytes=self._total_bytes,
        )

    def reset_statistics(self) -> None:
        self._hits = 0
        self._misses = 0
        self._total_bytes = 0
