"""Process-local TTL cache for search results and embeddings.

Entries are logically absent once ``now - timestamp > ttl``.  Expiry is
enforced lazily on :meth:`TTLCache.get` / :meth:`TTLCache.has` and by a
full sweep on every :meth:`TTLCache.set`; there is no background sweeper.

The cache is advisory: a miss only costs a recomputation.  The entry map
is guarded by a lock so request threads can share one instance, but it is
not shared across processes and :meth:`TTLCache.get_or_set` does not guard
against two callers computing the same key concurrently.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RAG_PREFIX = "rag:"
EMBEDDING_PREFIX = "embedding:"


@dataclass
class CacheEntry:
    value: Any
    timestamp: float
    ttl: float


@dataclass
class CacheStats:
    """Counters reported by :meth:`TTLCache.stats`.

    ``hit_rate`` is a percentage rounded to two decimals.
    """

    hits: int
    misses: int
    size: int
    hit_rate: float


def _hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def rag_key(query: str, category: str | None, tenant_id: str | None) -> str:
    """Deterministic key for a search over ``(query, category, tenant)``."""
    tenant = tenant_id or "default"
    params = "|".join([query.lower().strip(), category or "all", tenant])
    return f"{RAG_PREFIX}{tenant}:{_hash(params)}"


def embedding_key(text: str, model: str | None = None) -> str:
    """Deterministic key for the embedding of *text* (optionally per model)."""
    normalized = text.lower().strip()
    if model:
        normalized = f"{model}|{normalized}"
    return f"{EMBEDDING_PREFIX}{_hash(normalized)}"


class TTLCache:
    """In-memory ``key -> (value, timestamp, ttl)`` map.

    Parameters
    ----------
    default_ttl:
        TTL in seconds applied when :meth:`set` is called without one.
    clock:
        Monotonic time source; inject a fake in tests.
    rag_ttl / embedding_ttl:
        TTLs used by :meth:`cache_rag_query` and :meth:`cache_embedding`.
    global_tenant_id:
        Tenant whose documents feed every tenant's searches; invalidating
        it drops every cached search.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        rag_ttl: float = 600.0,
        embedding_ttl: float = 3600.0,
        global_tenant_id: str = "global",
    ) -> None:
        self.default_ttl = default_ttl
        self.rag_ttl = rag_ttl
        self.embedding_ttl = embedding_ttl
        self.global_tenant_id = global_tenant_id
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    # -- basic operations ----------------------------------------------------

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        entry = CacheEntry(
            value=value,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries[key] = entry
            self.sweep()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry, self._clock()):
                self._entries.pop(key, None)
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._expired(entry, self._clock()):
                self._entries.pop(key, None)
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                self._entries.pop(key, None)
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                self._entries.pop(key, None)
        return len(keys)

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop cached searches that may include *tenant_id*'s documents."""
        if tenant_id == self.global_tenant_id:
            removed = self.invalidate_prefix(RAG_PREFIX)
        else:
            removed = self.invalidate_prefix(f"{RAG_PREFIX}{tenant_id}:")
        logger.debug("Invalidated %d cached searches for tenant %s", removed, tenant_id)
        return removed

    def stats(self) -> CacheStats:
        with self._lock:
            self.sweep()
            hits, misses, size = self._hits, self._misses, len(self._entries)
        total = hits + misses
        hit_rate = (hits / total) * 100 if total else 0.0
        return CacheStats(
            hits=hits,
            misses=misses,
            size=size,
            hit_rate=round(hit_rate, 2),
        )

    # -- compute-on-miss -----------------------------------------------------

    def get_or_set(self, key: str, factory: Callable[[], T], ttl: float | None = None) -> T:
        """Return the cached value for *key*, computing and storing it on a miss.

        ``None`` results are returned but not stored.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def cache_rag_query(
        self,
        query: str,
        category: str | None,
        tenant_id: str,
        factory: Callable[[], T],
    ) -> T:
        return self.get_or_set(rag_key(query, category, tenant_id), factory, self.rag_ttl)

    def cache_embedding(
        self,
        text: str,
        factory: Callable[[], list[float]],
        *,
        model: str | None = None,
    ) -> list[float]:
        return self.get_or_set(embedding_key(text, model), factory, self.embedding_ttl)

    @staticmethod
    def _expired(entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > entry.ttl
