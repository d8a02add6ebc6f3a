# src/cache/models.py — v2
"""Cache domain models: CacheEntry, CacheMatch, CacheStatistics."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from gen3d.core.models import GenerationKind, ResultReference, utc_now


class CacheEntry(BaseModel):
    """Cached outcome of one successful generation.

    One live entry per ``cache_key``. ``hit_count`` never decreases.
    """

    cache_key: str
    fingerprint: str | None = None
    input_content: str
    kind: GenerationKind
    quality_tier: str | None = None
    result: ResultReference
    quality_score: float | None = None
    hit_count: int = 0
    last_hit_time: datetime | None = None
    create_time: datetime = Field(default_factory=utc_now)
    expire_time: datetime | None = None
    source_task_id: str | None = None

    def is_hot(self, hot_hit_threshold: int) -> bool:
        return self.hit_count >= hot_hit_threshold

    def is_expired(self, now: datetime) -> bool:
        return self.expire_time is not None and self.expire_time < now

    def is_live(self, now: datetime, hot_hit_threshold: int) -> bool:
        """Unexpired, or expired but exempt because it is hot."""
        return not self.is_expired(now) or self.is_hot(hot_hit_threshold)


class CacheMatch(BaseModel):
    """A fuzzy hit: an entry plus how close its input was to the query."""

    entry: CacheEntry
    similarity: float


class CacheStatistics(BaseModel):
    """Snapshot of cache counters since start or last reset."""

    total_entries: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    total_bytes: int = 0
