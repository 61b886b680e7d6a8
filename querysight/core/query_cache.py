"""
Query Cache

Short-lived result cache keyed by normalized query text plus the
serialized request settings. Entries expire after a TTL and are swept
lazily once the map grows past a soft bound.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional
import copy
import logging
import threading
import time

from querysight.config import QuerySettings
from querysight.core.adapters.base import normalize_query
from querysight.core.models import CacheEntry, Insight

logger = logging.getLogger(__name__)


def build_cache_key(query: str, settings: QuerySettings) -> str:
    """Normalized query text followed by the serialized settings."""
    return f"{normalize_query(query)}|{settings.cache_token()}"


def _detached(entry: CacheEntry) -> CacheEntry:
    """Copy of an entry whose rows and insights share nothing with the original."""
    return replace(
        entry,
        rows=[dict(row) for row in entry.rows],
        insights=copy.deepcopy(entry.insights),
    )


class QueryCache(ABC):
    """Store interface used by the database manager."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Return a live entry or None."""

    @abstractmethod
    def set(
        self,
        key: str,
        rows: List[Dict[str, Any]],
        insights: List[Insight],
        execution_time_ms: float = 0.0,
    ) -> CacheEntry:
        """Store a result, sweeping expired entries when over the soft bound."""

    @abstractmethod
    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""

    @abstractmethod
    def clear(self):
        """Drop every entry."""


class InMemoryQueryCache(QueryCache):
    """
    Process-local cache guarded by a single lock.

    The lock is held only while the map is read or mutated. Rows and
    insights are copied on the way in and on the way out.
    """

    def __init__(
        self,
        ttl: float = 60.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl: Seconds an entry stays valid
            max_entries: Soft bound that triggers a sweep of expired entries
            clock: Time source in seconds (injectable for tests)
        """
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _is_live(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp < self.ttl

    def get(self, key: str) -> Optional[CacheEntry]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_live(entry, now):
                del self._entries[key]
                return None
        return _detached(entry)

    def set(
        self,
        key: str,
        rows: List[Dict[str, Any]],
        insights: List[Insight],
        execution_time_ms: float = 0.0,
    ) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            rows=rows,
            insights=insights,
            timestamp=self.clock(),
            execution_time_ms=execution_time_ms,
        )
        with self._lock:
            self._entries[key] = _detached(entry)
            over_bound = len(self._entries) > self.max_entries
        if over_bound:
            removed = self.sweep()
            logger.debug(f"Cache over {self.max_entries} entries, swept {removed} expired")
        return entry

    def sweep(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if not self._is_live(e, now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
