"""
In-process result caches with TTL expiry and bounded size.

Two instances back the search core: ``search`` memoises whole responses keyed
by (query, top_k, options) and ``title`` memoises title-rescue sub-searches.
Both are plain objects injected into the engine; there is no module-level
cache state.

Eviction runs only when a *new* key is inserted into a full cache and always
removes exactly one entry, so ``size <= max_size`` holds after every ``set``.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from wikirank.shared.config import CACHE_POLICIES, CacheConfig, CacheInstanceConfig
from wikirank.shared.observability.logging import get_logger
from wikirank.shared.observability.metrics import (
    cache_entries,
    cache_evictions_total,
    cache_hit_rate,
    cache_operations_total,
)

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    hits: int = 0


def make_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """Stable key: prefix plus a short sha256 of the sorted JSON params."""
    payload = json.dumps(params, sort_keys=True, ensure_ascii=False, default=str)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}:{digest}"


class ResultCache:
    """Thread-safe TTL cache with lru / fifo / lfu eviction."""

    def __init__(
        self,
        name: str,
        max_size: int = 1000,
        ttl_seconds: float = 300.0,
        policy: str = "lru",
        weight_per_hit: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        if policy not in CACHE_POLICIES:
            raise ValueError(f"policy must be one of {CACHE_POLICIES}, got {policy}")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.policy = policy
        self.weight_per_hit = weight_per_hit
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        # Initialize labels so dashboards see the series before first use
        cache_hit_rate.labels(cache=name).set(0.0)
        cache_entries.labels(cache=name).set(0)

    @classmethod
    def from_config(cls, name: str, cfg: CacheInstanceConfig, **kwargs) -> "ResultCache":
        return cls(
            name=name,
            max_size=cfg.max_size,
            ttl_seconds=cfg.ttl_seconds,
            policy=cfg.policy,
            weight_per_hit=cfg.weight_per_hit_seconds,
            **kwargs,
        )

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if present and not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                self._record("get", "miss")
                return None

            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                self._record("get", "expired")
                return None

            entry.hits += 1
            self._hits += 1
            self._record("get", "hit")
            return entry.value

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                cache_entries.labels(cache=self.name).set(len(self._entries))
                return False
            return True

    def set(self, key: str, value: Any) -> None:
        """Insert or replace; evicts one entry when inserting into a full cache."""
        with self._lock:
            now = self._clock()
            if key in self._entries:
                self._entries[key] = CacheEntry(value=value, created_at=now)
                self._record("set", "update")
                return

            if len(self._entries) >= self.max_size:
                self._evict_one()
            self._entries[key] = CacheEntry(value=value, created_at=now)
            self._record("set", "insert")

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            self._record("delete", "hit" if removed else "miss")
            return removed

    def clear(self) -> None:
        """Clear entire cache."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            cache_hit_rate.labels(cache=self.name).set(0.0)
            cache_entries.labels(cache=self.name).set(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_one(self) -> None:
        # Caller holds the lock. Expired entries go first, whatever the policy.
        now = self._clock()
        victim = next(
            (k for k, e in self._entries.items() if self._is_expired(e, now)), None
        )
        if victim is None:
            if self.policy == "fifo":
                victim = next(iter(self._entries))
            elif self.policy == "lfu":
                # min() keeps the first (oldest) key among equal hit counts
                victim = min(self._entries, key=lambda k: self._entries[k].hits)
            else:
                victim = min(
                    self._entries,
                    key=lambda k: self._entries[k].created_at
                    + self._entries[k].hits * self.weight_per_hit,
                )
        del self._entries[victim]
        self._evictions += 1
        cache_evictions_total.labels(cache=self.name, policy=self.policy).inc()
        logger.debug("Cache eviction", cache=self.name, policy=self.policy)

    def _record(self, operation: str, result: str) -> None:
        cache_operations_total.labels(
            operation=operation, cache=self.name, result=result
        ).inc()
        total = self._hits + self._misses
        if total > 0:
            cache_hit_rate.labels(cache=self.name).set(self._hits / total)
        cache_entries.labels(cache=self.name).set(len(self._entries))

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            size = len(self._entries)
            entry_hits = sum(e.hits for e in self._entries.values())
            return {
                "name": self.name,
                "size": size,
                "max_size": self.max_size,
                "policy": self.policy,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "avg_hits": entry_hits / size if size else 0.0,
                "hit_rate": self._hits / total if total > 0 else 0.0,
            }


class SearchCaches:
    """The two cache instances a HybridSearchEngine needs."""

    def __init__(self, search: ResultCache, title: ResultCache, search_enabled: bool = True,
                 title_enabled: bool = True):
        self.search = search
        self.title = title
        self.search_enabled = search_enabled
        self.title_enabled = title_enabled

    @classmethod
    def from_config(cls, cfg: CacheConfig, clock: Callable[[], float] = time.time) -> "SearchCaches":
        return cls(
            search=ResultCache.from_config("search", cfg.search, clock=clock),
            title=ResultCache.from_config("title", cfg.title, clock=clock),
            search_enabled=cfg.search.enabled,
            title_enabled=cfg.title.enabled,
        )

    def clear(self) -> None:
        self.search.clear()
        self.title.clear()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {"search": self.search.stats(), "title": self.title.stats()}
