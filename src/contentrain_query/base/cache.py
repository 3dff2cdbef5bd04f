# src/contentrain_query/base/cache.py
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .config import DEFAULT_CACHE_TTL, DEFAULT_MAX_CACHE_ENTRIES

log = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    model_id: Optional[str]
    value: Any
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


class CacheManager:
    """
    In-process result cache with lazy TTL expiry and LRU eviction.

    Every public method holds the same re-entrant lock, so a get or a set is
    atomic with respect to concurrent tasks and threads. Two concurrent misses
    for the same key may both populate it; the later write wins.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
        default_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be a positive integer.")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be a positive number of seconds.")
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                log.debug(f"Cache entry expired: {key}")
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        model_id: Optional[str] = None,
    ) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be a positive number of seconds.")
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                model_id=model_id,
                value=value,
                stored_at=self._clock(),
                ttl=ttl,
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                log.debug(f"Cache entry evicted (LRU): {evicted}")

    def invalidate(self, model_id: Optional[str] = None) -> int:
        """Drop every entry stored for `model_id`, or everything when omitted."""
        with self._lock:
            if model_id is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                keys = [k for k, e in self._entries.items() if e.model_id == model_id]
                for key in keys:
                    del self._entries[key]
                removed = len(keys)
        log.info(
            f"Invalidated {removed} cache entries"
            + (f" for model '{model_id}'" if model_id is not None else "")
        )
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = self._expirations = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "size": len(self._entries),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_default_cache: Optional[CacheManager] = None
_default_cache_lock = threading.Lock()


def get_default_cache() -> CacheManager:
    """The process-wide shared cache instance."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = CacheManager()
        return _default_cache
