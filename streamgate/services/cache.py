"""
TieredCache - Namespaced in-memory cache with per-namespace TTL and capacity.

Features:
- Named partitions ("api", "user", "static") with their own TTL and size bound
- Lazy TTL expiry on read, plus a periodic sweep (see CacheSweeper)
- Oldest-created eviction when a namespace is at capacity
- Process-lifetime hit/miss/set/delete counters

Reads and writes are synchronous and never await, so each one runs to
completion without interleaving under asyncio. get_or_set and warm only
await the caller's factory, never the store.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from streamgate.services.errors import CacheError
from streamgate.settings import NamespaceConfig

DEFAULT_NAMESPACE = "api"

DEFAULT_NAMESPACES: dict[str, NamespaceConfig] = {
    "api": NamespaceConfig(default_ttl=600, max_entries=1000),
    "user": NamespaceConfig(default_ttl=1800, max_entries=200),
    "static": NamespaceConfig(default_ttl=3600, max_entries=500),
}


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    namespace: str
    key: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Check if entry is past its TTL."""
        return now - self.created_at > self.ttl


@dataclass
class NamespaceStats:
    """Counters for a single namespace."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    max_entries: int = 0
    default_ttl: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "max_entries": self.max_entries,
            "default_ttl": self.default_ttl,
        }


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    per_namespace: dict[str, NamespaceStats] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "hit_rate": f"{self.hit_rate:.2%}",
            "per_namespace": {
                name: ns.to_dict() for name, ns in self.per_namespace.items()
            },
        }


class TieredCache:
    """
    Namespaced cache with TTL and capacity-bounded eviction.

    Usage:
        cache = TieredCache()

        value = cache.get("api", key)
        if value is None:
            value = await fetch()
            cache.set("api", key, value, ttl=300)
    """

    def __init__(
        self,
        namespaces: dict[str, NamespaceConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._configs = dict(namespaces or DEFAULT_NAMESPACES)
        if DEFAULT_NAMESPACE not in self._configs:
            self._configs[DEFAULT_NAMESPACE] = DEFAULT_NAMESPACES[DEFAULT_NAMESPACE]
        for name, config in self._configs.items():
            if config.max_entries < 1:
                raise CacheError(f"Namespace '{name}' must hold at least one entry")

        # Insertion order doubles as creation order: replacing a key re-inserts it
        self._stores: dict[str, dict[str, CacheEntry]] = {
            name: {} for name in self._configs
        }
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats(
            per_namespace={name: NamespaceStats() for name in self._configs}
        )

    @staticmethod
    def generate_api_key(endpoint: str, params: dict[str, Any] | None = None) -> str:
        """Generate a cache key that ignores parameter insertion order."""
        param_string = "&".join(
            f"{k}={v}" for k, v in sorted((params or {}).items())
        )
        return f"api:{endpoint}:{param_string}"

    def namespaces(self) -> list[str]:
        return list(self._configs)

    def get(self, namespace: str, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        namespace = self._resolve(namespace)
        store = self._stores[namespace]
        ns_stats = self._stats.per_namespace[namespace]

        entry = store.get(key)
        if entry is None:
            self._stats.misses += 1
            ns_stats.misses += 1
            self._log(f"MISS: {namespace}/{key[:50]}")
            return None

        if entry.is_expired(self._clock()):
            del store[key]
            self._stats.misses += 1
            ns_stats.misses += 1
            self._log(f"EXPIRED: {namespace}/{key[:50]}")
            return None

        self._stats.hits += 1
        ns_stats.hits += 1
        self._log(f"HIT: {namespace}/{key[:50]}")
        return entry.value

    def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        ttl: float | None = None,
    ) -> bool:
        """
        Store a value.

        Args:
            namespace: Cache partition
            key: Cache key
            value: Data to cache
            ttl: Seconds to live; None, zero or negative uses the namespace default

        Returns:
            False when value is None, which is never stored since get() could
            not tell it apart from a miss
        """
        if value is None:
            self._log(f"SKIP: {namespace}/{key[:50]} (None is not cacheable)")
            return False

        namespace = self._resolve(namespace)
        config = self._configs[namespace]
        store = self._stores[namespace]
        if ttl is None or ttl <= 0:
            ttl = config.default_ttl

        store.pop(key, None)
        while len(store) >= config.max_entries:
            self._evict_oldest(namespace)

        store[key] = CacheEntry(
            namespace=namespace,
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=ttl,
        )
        self._stats.sets += 1
        self._log(f"SET: {namespace}/{key[:50]} (TTL: {ttl}s)")
        return True

    def delete(self, namespace: str, key: str) -> bool:
        """Delete a specific key from cache."""
        store = self._stores[self._resolve(namespace)]
        if key in store:
            del store[key]
            self._stats.deletes += 1
            self._log(f"DELETE: {namespace}/{key[:50]}")
            return True
        return False

    def exists(self, namespace: str, key: str) -> bool:
        """Check presence without touching hit/miss counters."""
        entry = self._stores[self._resolve(namespace)].get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def invalidate_pattern(self, namespace: str, pattern: str) -> int:
        """
        Invalidate all keys in a namespace containing a substring.

        Returns:
            Number of entries invalidated
        """
        store = self._stores[self._resolve(namespace)]
        keys_to_delete = [k for k in store if pattern in k]
        for key in keys_to_delete:
            del store[key]
        self._stats.deletes += len(keys_to_delete)

        if keys_to_delete:
            self._log(
                f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'"
            )
        return len(keys_to_delete)

    def mget(self, namespace: str, keys: list[str]) -> dict[str, Any]:
        """Return the live entries among keys; absent and expired keys are left out."""
        values = {}
        for key in keys:
            value = self.get(namespace, key)
            if value is not None:
                values[key] = value
        return values

    def mset(
        self,
        namespace: str,
        items: dict[str, Any],
        ttl: float | None = None,
    ) -> int:
        """Store several values with one TTL. Returns how many were stored."""
        return sum(1 for key, value in items.items() if self.set(namespace, key, value, ttl))

    def get_pattern(self, namespace: str, pattern: str) -> dict[str, Any]:
        """Live entries whose key contains a substring."""
        store = self._stores[self._resolve(namespace)]
        return self.mget(namespace, [k for k in store if pattern in k])

    async def get_or_set(
        self,
        namespace: str,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """
        Return the cached value, or await factory() and cache its result.

        Exceptions from factory propagate and nothing is cached.
        """
        value = self.get(namespace, key)
        if value is None:
            value = await factory()
            self.set(namespace, key, value, ttl)
        return value

    async def warm(
        self,
        namespace: str,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> bool:
        """
        Populate a key ahead of demand, replacing any current value.

        Returns:
            True if a value was stored; a failing factory is logged, not raised
        """
        try:
            value = await factory()
        except Exception as e:
            logger.warning(f"Cache warming failed for {namespace}/{key[:50]}: {e}")
            return False
        return self.set(namespace, key, value, ttl)

    def flush(self, namespace: str | None = None) -> int:
        """Clear one namespace, or every namespace when none is given."""
        names = [self._resolve(namespace)] if namespace else list(self._stores)
        count = 0
        for name in names:
            count += len(self._stores[name])
            self._stores[name].clear()
        self._stats.deletes += count
        self._log(f"FLUSH: {count} entries removed")
        return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        removed = 0
        for store in self._stores.values():
            expired_keys = [k for k, v in store.items() if v.is_expired(now)]
            for key in expired_keys:
                del store[key]
            removed += len(expired_keys)

        if removed:
            self._log(f"CLEANUP: {removed} expired entries removed")
        return removed

    def health_check(self) -> bool:
        """Round-trip a sentinel value through the api namespace."""
        sentinel = object()
        self.set(DEFAULT_NAMESPACE, "health_check", sentinel, ttl=10)
        retrieved = self.get(DEFAULT_NAMESPACE, "health_check")
        self.delete(DEFAULT_NAMESPACE, "health_check")
        return retrieved is sentinel

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        for name, ns_stats in self._stats.per_namespace.items():
            ns_stats.size = len(self._stores[name])
            ns_stats.max_entries = self._configs[name].max_entries
            ns_stats.default_ttl = self._configs[name].default_ttl
        return self._stats

    def _resolve(self, namespace: str) -> str:
        if namespace in self._configs:
            return namespace
        self._log(f"Unknown namespace '{namespace}', using '{DEFAULT_NAMESPACE}'")
        return DEFAULT_NAMESPACE

    def _evict_oldest(self, namespace: str) -> None:
        """Evict the oldest-created entry of a namespace."""
        store = self._stores[namespace]
        if not store:
            return

        oldest_key = next(iter(store))
        del store[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {namespace}/{oldest_key[:50]}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TieredCache] {message}")
