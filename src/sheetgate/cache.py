"""
Read cache for remote responses.

Entries carry their own TTL. Once the store reaches ``max_size`` the least
recently used entry is evicted, or the oldest one under the fifo strategy.
Mutations invalidate by table, so list and aggregate reads never outlive a
write made through this client.

Values are copied on the way in and on the way out, so mutating a result
never changes what later readers get.

Caching is best effort: a failing persistent mirror behaves like a miss and
is never surfaced to the caller.
"""

import copy
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Callable, MutableMapping, Optional

logger = logging.getLogger(__name__)

# Default TTLs in seconds, by the kind of read the key describes
TTL_BY_KIND: dict[str, float] = {
    "list": 300.0,
    "record": 600.0,
    "static": 3600.0,
    "report": 1800.0,
}

# Single-record reads of these tables live longer or shorter than "record"
TTL_BY_TABLE: dict[str, float] = {
    "usuarios": 1800.0,
    "proyectos": 900.0,
    "materiales": 1200.0,
    "actividades": 600.0,
}

EVICTION_STRATEGIES = ("lru", "fifo")

# Writes to a table also make these cached views stale
INVALIDATION_PATTERNS: dict[str, list[str]] = {
    "proyectos": ["proyectos:*", "dashboard:*", "reports:proyectos:*"],
    "materiales": ["materiales:*", "bom:*", "dashboard:*", "reports:materiales:*"],
    "usuarios": ["usuarios:*", "personal:*", "dashboard:*"],
    "actividades": ["actividades:*", "proyectos:*", "dashboard:*", "reports:actividades:*"],
    "clientes": ["clientes:*", "proyectos:*", "dashboard:*"],
    "bom": ["bom:*", "materiales:*", "dashboard:*"],
    "registrohoras": ["registrohoras:*", "dashboard:*"],
}


def invalidation_patterns(table: str) -> list[str]:
    table_key = table.lower()
    return INVALIDATION_PATTERNS.get(table_key, [f"{table_key}:*"])


def dependent_tables(table: str) -> list[str]:
    """Lower-cased key prefixes that a write to ``table`` makes stale."""
    return list(
        dict.fromkeys(pattern.split(":", 1)[0] for pattern in invalidation_patterns(table))
    )


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float
    access_count: int = 1

    def expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class CacheStore:
    """In-memory TTL cache with LRU or FIFO eviction and an optional persistent mirror."""

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: Optional[float] = None,
        storage: Optional[MutableMapping[str, str]] = None,
        clock: Callable[[], float] = time.time,
        strategy: str = "lru",
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if strategy not in EVICTION_STRATEGIES:
            raise ValueError(f"Unknown eviction strategy: {strategy}")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.strategy = strategy
        self._storage = storage
        self._clock = clock
        # First item is the next to evict: least recently used, or oldest for fifo
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        """Return the cached value, or None on a miss or an expired entry."""
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = self._load_persisted(key)
            if entry is not None:
                self._entries[key] = entry
                self._evict_overflow()

        if entry is None:
            self._misses += 1
            return None

        if entry.expired(now):
            self._drop(key)
            self._misses += 1
            logger.debug(f"Cache expired: {key}")
            return None

        if self.strategy == "lru":
            self._entries.move_to_end(key)
        entry.access_count += 1
        self._hits += 1
        logger.debug(f"Cache hit: {key} (age {now - entry.timestamp:.1f}s)")
        return copy.deepcopy(entry.data)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a copy of a value; ``ttl`` defaults to one inferred from the key."""
        if ttl is None:
            ttl = self.default_ttl if self.default_ttl is not None else self.ttl_for_key(key)
        entry = CacheEntry(data=copy.deepcopy(value), timestamp=self._clock(), ttl=ttl)

        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._evict_overflow()
        self._persist(key, entry)
        logger.debug(f"Cache set: {key} (ttl {ttl}s, size {len(self._entries)})")

    def invalidate(self, pattern: str) -> int:
        """Drop every key matching a glob pattern such as ``materiales:list:*``."""
        pattern = pattern.lower()
        keys = [key for key in self._entries if fnmatchcase(key.lower(), pattern)]
        keys.extend(
            key
            for key in self._persisted_keys()
            if key not in self._entries and fnmatchcase(key.lower(), pattern)
        )
        for key in keys:
            self._drop(key)
        if keys:
            logger.debug(f"Cache invalidated {len(keys)} entries for {pattern}")
        return len(keys)

    def invalidate_by_operation(self, table: str, operation: str) -> int:
        """Drop everything a create/update/delete on ``table`` may have changed."""
        patterns = invalidation_patterns(table)
        logger.debug(f"Cache invalidation after {operation} on {table}: {patterns}")
        return sum(self.invalidate(pattern) for pattern in patterns)

    def clear(self) -> None:
        for key in list(self._entries):
            self._drop(key)
        for key in self._persisted_keys():
            self._unpersist(key)

    def purge_expired(self) -> int:
        """Sweep out stale entries without waiting for them to be read."""
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in stale:
            self._drop(key)
        return len(stale)

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
            "size": len(self._entries),
        }

    def entry_info(self, key: str) -> dict[str, Any]:
        """Age, TTL and access count of an in-memory entry, without touching it."""
        entry = self._entries.get(key)
        if entry is None:
            return {"exists": False}
        return {
            "exists": True,
            "age": self._clock() - entry.timestamp,
            "ttl": entry.ttl,
            "access_count": entry.access_count,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.expired(self._clock())

    @staticmethod
    def ttl_for_key(key: str) -> float:
        """Guess a TTL from the shape of a ``table:operation[:id]`` key."""
        parts = key.lower().split(":")
        if "static" in parts or "config" in parts:
            return TTL_BY_KIND["static"]
        if parts[0] in ("reports", "reportes"):
            return TTL_BY_KIND["report"]
        if len(parts) > 1 and parts[1] == "get":
            return TTL_BY_TABLE.get(parts[0], TTL_BY_KIND["record"])
        return TTL_BY_KIND["list"]

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.max_size:
            key, _ = self._entries.popitem(last=False)
            self._unpersist(key)
            logger.debug(f"Cache evicted ({self.strategy}): {key}")

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        self._unpersist(key)

    # Persistent mirror. Every failure here is a silent miss.

    def _persist(self, key: str, entry: CacheEntry) -> None:
        if self._storage is None:
            return
        try:
            self._storage[key] = json.dumps(
                {"data": entry.data, "timestamp": entry.timestamp, "ttl": entry.ttl}
            )
        except Exception as e:
            logger.debug(f"Cache persistence failed for {key}: {e}")

    def _load_persisted(self, key: str) -> Optional[CacheEntry]:
        if self._storage is None:
            return None
        try:
            raw = self._storage.get(key)
            if raw is None:
                return None
            payload = json.loads(raw)
            return CacheEntry(
                data=payload["data"],
                timestamp=float(payload["timestamp"]),
                ttl=float(payload["ttl"]),
            )
        except Exception as e:
            logger.debug(f"Cache storage read failed for {key}: {e}")
            return None

    def _unpersist(self, key: str) -> None:
        if self._storage is None:
            return
        try:
            self._storage.pop(key, None)
        except Exception as e:
            logger.debug(f"Cache storage delete failed for {key}: {e}")

    def _persisted_keys(self) -> list[str]:
        if self._storage is None:
            return []
        try:
            return list(self._storage.keys())
        except Exception as e:
            logger.debug(f"Cache storage listing failed: {e}")
            return []
