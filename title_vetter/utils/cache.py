from __future__ import annotations

import json
import math
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Optional

Clock = Callable[[], float]


class CacheBase:
    """Report cache keyed by lower-cased domain with TTL expiry."""

    def __init__(self, ttl_seconds: float = 3600.0, max_entries: int = 1000, clock: Optional[Clock] = None) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self.clock = clock or time.time

    @staticmethod
    def _key(key: str) -> str:
        return key.strip().lower()

    def _expired(self, written_at: float) -> bool:
        return self.clock() - written_at >= self.ttl_seconds

    def _evict_count(self, size: int) -> int:
        if size <= self.max_entries:
            return 0
        return max(1, math.ceil(size * 0.2))

    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict) -> None:
        raise NotImplementedError

    def evict(self) -> int:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class MemoryCache(CacheBase):
    def __init__(self, ttl_seconds: float = 3600.0, max_entries: int = 1000, clock: Optional[Clock] = None) -> None:
        super().__init__(ttl_seconds, max_entries, clock)
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        key = self._key(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, written_at = entry
            if self._expired(written_at):
                del self._entries[key]
                return None
        return json.loads(value)

    def set(self, key: str, value: dict) -> None:
        payload = json.dumps(value, default=str)
        with self._lock:
            self._entries[self._key(key)] = (payload, self.clock())
        self.evict()

    def evict(self) -> int:
        with self._lock:
            count = self._evict_count(len(self._entries))
            if not count:
                return 0
            oldest = sorted(self._entries.items(), key=lambda item: item[1][1])[:count]
            for key, _ in oldest:
                del self._entries[key]
            return count

    def __len__(self) -> int:
        return len(self._entries)


class SqliteCache(CacheBase):
    def __init__(
        self,
        path: str,
        ttl_seconds: float = 3600.0,
        max_entries: int = 1000,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(ttl_seconds, max_entries, clock)
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS cache (key TEXT PRIMARY KEY, value TEXT, ts REAL)"
            )
            conn.commit()

    def get(self, key: str) -> Optional[dict]:
        key = self._key(key)
        with sqlite3.connect(self.path) as conn:
            row = conn.execute("SELECT value, ts FROM cache WHERE key=?", (key,)).fetchone()
            if not row:
                return None
            if self._expired(row[1]):
                conn.execute("DELETE FROM cache WHERE key=?", (key,))
                conn.commit()
                return None
            return json.loads(row[0])

    def set(self, key: str, value: dict) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cache (key, value, ts) VALUES (?, ?, ?)",
                (self._key(key), json.dumps(value, default=str), self.clock()),
            )
            conn.commit()
        self.evict()

    def evict(self) -> int:
        with sqlite3.connect(self.path) as conn:
            size = conn.execute("SELECT COUNT(*) FROM cache").fetchone()[0]
            count = self._evict_count(size)
            if not count:
                return 0
            conn.execute(
                "DELETE FROM cache WHERE key IN (SELECT key FROM cache ORDER BY ts ASC LIMIT ?)",
                (count,),
            )
            conn.commit()
            return count

    def __len__(self) -> int:
        with sqlite3.connect(self.path) as conn:
            return conn.execute("SELECT COUNT(*) FROM cache").fetchone()[0]


def build_cache(
    cache_mode: str,
    path: str,
    ttl_seconds: float = 3600.0,
    max_entries: int = 1000,
    clock: Optional[Clock] = None,
) -> Optional[CacheBase]:
    if cache_mode == "memory":
        return MemoryCache(ttl_seconds, max_entries, clock)
    if cache_mode == "sqlite":
        return SqliteCache(path, ttl_seconds, max_entries, clock)
    return None
