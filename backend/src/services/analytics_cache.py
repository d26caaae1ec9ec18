"""
In-process TTL cache for analytics preview responses.

Entries expire after cache_time seconds and are reported stale once they
are older than stale_time. There is no size-based eviction: expired
entries are dropped on read or by cleanup().
"""

import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Optional, Tuple

from src.config.settings import get_analytics_cache_stale, get_analytics_cache_ttl

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TIME = 300
DEFAULT_STALE_TIME = 120
DEFAULT_INVALIDATE_RANGE = "7d"


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


def cache_key(
    client_id: Optional[str] = None,
    company_id: Optional[str] = None,
    date_range: str = DEFAULT_INVALIDATE_RANGE,
    comparison_mode: Optional[str] = None,
) -> str:
    return f"{client_id or company_id or 'unknown'}_{date_range}_{comparison_mode or 'none'}"


class AnalyticsCache:
    """Thread-safe TTL map keyed by (client, date range, comparison mode)."""

    def __init__(
        self,
        cache_time: float = DEFAULT_CACHE_TIME,
        stale_time: float = DEFAULT_STALE_TIME,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_time = cache_time
        self.stale_time = stale_time
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = RLock()

    def get(
        self,
        client_id: Optional[str] = None,
        company_id: Optional[str] = None,
        date_range: str = DEFAULT_INVALIDATE_RANGE,
        comparison_mode: Optional[str] = None,
    ) -> Tuple[Optional[Any], bool]:
        """
        Returns:
            (data, is_stale); (None, False) on miss or expiry
        """
        key = cache_key(client_id, company_id, date_range, comparison_mode)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False

            age = self._clock() - entry.timestamp
            if age >= self.cache_time:
                del self._entries[key]
                return None, False

            return entry.data, age >= self.stale_time

    def set(
        self,
        data: Any,
        client_id: Optional[str] = None,
        company_id: Optional[str] = None,
        date_range: str = DEFAULT_INVALIDATE_RANGE,
        comparison_mode: Optional[str] = None,
    ) -> None:
        key = cache_key(client_id, company_id, date_range, comparison_mode)
        with self._lock:
            self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def invalidate(
        self,
        client_id: Optional[str] = None,
        company_id: Optional[str] = None,
        date_range: Optional[str] = None,
        comparison_mode: Optional[str] = None,
    ) -> None:
        """Drop one entry, or everything when called without arguments."""
        with self._lock:
            if client_id is None and company_id is None and date_range is None and comparison_mode is None:
                self._entries.clear()
                return
            key = cache_key(client_id, company_id, date_range or DEFAULT_INVALIDATE_RANGE, comparison_mode)
            self._entries.pop(key, None)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            ages = [now - entry.timestamp for entry in self._entries.values()]
        return {
            "total_entries": len(ages),
            "valid_entries": sum(1 for age in ages if age < self.cache_time),
            "stale_entries": sum(1 for age in ages if self.stale_time <= age < self.cache_time),
            "oldest_entry": max(ages) if ages else 0,
        }

    def cleanup(self) -> int:
        """Remove expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now - entry.timestamp >= self.cache_time]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Analytics cache cleanup", extra={"removed": len(expired)})
        return len(expired)


_analytics_cache: Optional[AnalyticsCache] = None


def get_analytics_cache() -> AnalyticsCache:
    """Process-wide cache configured from the environment."""
    global _analytics_cache
    if _analytics_cache is None:
        _analytics_cache = AnalyticsCache(
            cache_time=get_analytics_cache_ttl(),
            stale_time=get_analytics_cache_stale(),
        )
    return _analytics_cache
