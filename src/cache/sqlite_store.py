# src/cache/sqlite_store.py — v2
"""SQLite-based cache store (CACHE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. The entry is stored as JSON
next to the columns that need atomic updates (hit_count, last_hit_time);
the columns win over the JSON copy when reading.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from gen3d.cache.base_cache_store import BaseCacheStore
from gen3d.cache.models import CacheEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    fingerprint TEXT,
    hit_count INTEGER NOT NULL DEFAULT 0,
    last_hit_time TEXT,
    expire_time TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_fingerprint ON cache_entries(fingerprint);
"""


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed cache store for persistence across restarts."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser() if str(db_path) != ":memory:" else None
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path or ":memory:"))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    def _row_to_entry(self, row: tuple) -> CacheEntry | None:
        data, hit_count, last_hit_time = row
        try:
            entry = CacheEntry(**json.loads(data))
        except Exception as e:
            logger.warning("Failed to deserialize cache entry: %s", e)
            return None
        entry.hit_count = hit_count
        entry.last_hit_time = (
            datetime.fromisoformat(last_hit_time) if last_hit_time else None
        )
        return entry

    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve cache entry by key."""
        cursor = self._conn.execute(
            "SELECT data, hit_count, last_hit_time FROM cache_entries WHERE key = ?",
            (key,),
        )
        row = cursor.fetchone()
        return self._row_to_entry(row) if row is not None else None

    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store a cache entry (upsert)."""
        self._conn.execute(
            """INSERT OR REPLACE INTO cache_entries
               (key, data, fingerprint, hit_count, last_hit_time, expire_time)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                key,
                entry.model_dump_json(),
                entry.fingerprint,
                entry.hit_count,
                entry.last_hit_time.isoformat() if entry.last_hit_time else None,
                entry.expire_time.isoformat() if entry.expire_time else None,
            ),
        )
        self._conn.commit()

    async def delete(self, key: str) -> bool:
        """Remove a cache entry."""
        cursor = self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        self._conn.commit()
        return cursor.rowcount > 0

    async def increment_hit(self, key: str, hit_time: datetime) -> CacheEntry | None:
        """Single UPDATE so concurrent writers cannot lose increments."""
        cursor = self._conn.execute(
            """UPDATE cache_entries
               SET hit_count = hit_count + 1, last_hit_time = ?
               WHERE key = ?""",
            (hit_time.isoformat(), key),
        )
        self._conn.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get(key)

    async def list_entries(self) -> list[CacheEntry]:
        """List all cached entries."""
        cursor = self._conn.execute(
            "SELECT data, hit_count, last_hit_time FROM cache_entries"
        )
        entries: list[CacheEntry] = []
        for row in cursor.fetchall():
            entry = self._row_to_entry(row)
            if entry is not None:
                entries.append(entry)
        return entries

    async def count(self) -> int:
        cursor = self._conn.execute("SELECT COUNT(*) FROM cache_entries")
        return int(cursor.fetchone()[0])

    async def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
