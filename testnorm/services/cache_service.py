"""
Cache Service
=============
In-memory TTL caches shared by the discovery layer.

Caches:
    - DiscoveryCache: target label → discovered cases (+ content hash of the
      raw text they came from). The hash is stored for inspection only;
      a fresh entry is reused without comparing it.
    - QueryCache: hash(sorted paths, sorted types) → any listing result.

Expiry:
    - Evaluated on read: an entry older than its TTL is treated as absent
      and evicted.
    - sweep_expired() evicts every stale entry in one pass.

Concurrency:
    - No locking and no in-flight coalescing. Two concurrent misses for the
      same key both compute; the later set() wins.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, TypeVar

from testnorm.core.config import QUERY_CACHE_TTL_MS, TEST_CASE_DISCOVERY_CACHE_MS
from testnorm.models.test_case import TestCaseParseResult
from testnorm.utils.hashing import query_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    ttl_ms: int

    def is_expired(self, now_ms: float) -> bool:
        return now_ms - self.timestamp > self.ttl_ms


@dataclass
class DiscoveryCacheEntry:
    result: TestCaseParseResult
    content_hash: str
    timestamp: float
    ttl_ms: int

    def is_expired(self, now_ms: float) -> bool:
        return now_ms - self.timestamp > self.ttl_ms


class _TTLCache:
    """
    Key → entry map with read-time expiry.

    Subclasses decide what an entry holds; every entry needs
    `timestamp`, `ttl_ms` and `is_expired(now_ms)`.
    """

    def __init__(self, default_ttl_ms: int, clock: Callable[[], float] = _now_ms) -> None:
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: dict[str, object] = {}

    def _get_entry(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Cache entry expired: %s", key)
            return None
        return entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self, pattern: Optional[str] = None) -> int:
        """
        Remove entries whose key contains `pattern` (all when omitted).

        Returns
        -------
        int
            Number of entries removed.
        """
        if pattern is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
            removed = len(doomed)
        logger.debug("%s cleared %d entr%s", type(self).__name__, removed, "y" if removed == 1 else "ies")
        return removed

    def sweep_expired(self) -> int:
        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def stats(self) -> dict:
        return {"size": len(self._entries), "keys": list(self._entries)}

    def __len__(self) -> int:
        return len(self._entries)


class DiscoveryCache(_TTLCache):
    """
    Discovered test cases per target.

    Usage:
        cache = DiscoveryCache()
        cache.set("//app:tests", result, content_hash("...raw output..."))
        cache.get("//app:tests")
    """

    def __init__(self, default_ttl_ms: int = TEST_CASE_DISCOVERY_CACHE_MS,
                 clock: Callable[[], float] = _now_ms) -> None:
        super().__init__(default_ttl_ms, clock)

    def get(self, key: str) -> Optional[TestCaseParseResult]:
        entry = self.get_entry(key)
        return entry.result if entry else None

    def get_entry(self, key: str) -> Optional[DiscoveryCacheEntry]:
        return self._get_entry(key)

    def set(self, key: str, result: TestCaseParseResult, content_hash: str = "",
            ttl_ms: Optional[int] = None) -> None:
        self._entries[key] = DiscoveryCacheEntry(
            result=result,
            content_hash=content_hash,
            timestamp=self._clock(),
            ttl_ms=self.default_ttl_ms if ttl_ms is None else ttl_ms,
        )


class QueryCache(_TTLCache, Generic[T]):
    """Target-listing results keyed by a hash of the query parameters."""

    def __init__(self, default_ttl_ms: int = QUERY_CACHE_TTL_MS,
                 clock: Callable[[], float] = _now_ms) -> None:
        super().__init__(default_ttl_ms, clock)

    @staticmethod
    def create_key(paths: Iterable[str], types: Iterable[str]) -> str:
        return query_key(list(paths or []), list(types or []))

    def get(self, key: str) -> Optional[T]:
        entry = self._get_entry(key)
        return entry.data if entry else None

    def set(self, key: str, data: T, ttl_ms: Optional[int] = None) -> None:
        self._entries[key] = CacheEntry(
            data=data,
            timestamp=self._clock(),
            ttl_ms=self.default_ttl_ms if ttl_ms is None else ttl_ms,
        )
