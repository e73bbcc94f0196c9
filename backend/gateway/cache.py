"""
Bounded TTL Cache - In-memory store for upstream responses

WHY: A full Raydium pair listing is tens of megabytes. Caching without a byte
budget is how the dashboard backend used to run out of memory.

DESIGN:
- In-memory map, one CacheEntry per key with an estimated byte size
- get() never hides old entries: the gateway decides between fresh, stale-fallback
  and refetch
- Hard caps at put(): oversized entries are rejected, and the oldest entries are
  evicted until the new one fits in the budget
- Periodic sweep drops entries past their retention horizon and, when over
  budget (or under process memory pressure), evicts oldest-first down to 50%
- Memory pressure is sampled with psutil; no garbage-collector hints
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """
    Single cache entry. Never mutated: a refresh replaces it.

    ttl is the freshness window, stale_ttl the retention horizon after which the
    sweep discards the entry.
    """
    key: str
    value: Any
    created_at: float
    estimated_size: int
    ttl: float
    stale_ttl: float

    def age(self, now: float) -> float:
        return now - self.created_at


def estimate_size(value: Any) -> int:
    """
    Rough byte size of a cached value.

    Bytes and str are measured directly; anything else by its JSON encoding.
    """
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    try:
        return len(json.dumps(value, default=str, separators=(",", ":")).encode("utf-8"))
    except (TypeError, ValueError):
        return len(repr(value).encode("utf-8"))


def _process_rss() -> int:
    return psutil.Process().memory_info().rss


class BoundedTTLCache:
    """
    Key -> CacheEntry store with TTLs and a global byte budget.

    All operations are synchronous and total: no I/O, nothing raised to callers.
    """

    def __init__(
        self,
        memory_budget_bytes: int,
        max_entry_bytes: Optional[int] = None,
        default_ttl: float = 300.0,
        heap_ceiling_bytes: Optional[int] = None,
        high_water_ratio: float = 0.8,
        sweep_interval: float = 300.0,
        memory_check_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
        memory_probe: Callable[[], int] = _process_rss,
    ):
        self._entries: Dict[str, CacheEntry] = {}
        self._total_bytes = 0

        self._budget = memory_budget_bytes
        self._max_entry_bytes = min(max_entry_bytes or memory_budget_bytes, memory_budget_bytes)
        self._default_ttl = default_ttl
        self._heap_ceiling = heap_ceiling_bytes
        self._high_water_ratio = high_water_ratio
        self._sweep_interval = sweep_interval
        self._memory_check_interval = memory_check_interval
        self._clock = clock
        self._memory_probe = memory_probe

        self._tasks: List[asyncio.Task] = []

        # Statistics for monitoring
        self._stats = {
            "puts": 0,
            "rejected": 0,
            "evictions": 0,
            "expired": 0,
            "sweeps": 0,
            "pressure_sweeps": 0,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for `key` whatever its age, or None."""
        return self._entries.get(key)

    def is_fresh(self, entry: CacheEntry, ttl: Optional[float] = None) -> bool:
        """True while the entry's age is below `ttl` (the entry's own ttl by default)."""
        ttl = entry.ttl if ttl is None else ttl
        return entry.age(self._clock()) < ttl

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    @property
    def memory_budget_bytes(self) -> int:
        return self._budget

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(
        self,
        key: str,
        value: Any,
        estimated_size: Optional[int] = None,
        ttl: Optional[float] = None,
        stale_ttl: Optional[float] = None,
    ) -> bool:
        """
        Insert or replace `key`. Returns False if the entry was rejected as too large.

        The budget holds after every put: oldest entries are evicted first to make room.
        """
        size = estimate_size(value) if estimated_size is None else max(0, int(estimated_size))
        ttl = self._default_ttl if ttl is None else ttl
        stale_ttl = ttl if stale_ttl is None else max(stale_ttl, ttl)

        if size > self._max_entry_bytes:
            self._stats["rejected"] += 1
            logger.warning(
                f"Cache REJECT: key={key} size={size} max_entry_bytes={self._max_entry_bytes}"
            )
            return False

        self._remove(key)

        overflow = self._total_bytes + size - self._budget
        if overflow > 0:
            freed = self._evict_oldest(target_bytes=self._budget - size)
            logger.info(f"Cache evicted {freed} entries to admit key={key} size={size}")

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            estimated_size=size,
            ttl=ttl,
            stale_ttl=stale_ttl,
        )
        self._total_bytes += size
        self._stats["puts"] += 1
        logger.debug(f"Cache SET: key={key} size={size} ttl={ttl} total_bytes={self._total_bytes}")
        return True

    def invalidate(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        removed = self._remove(key)
        if removed:
            logger.info(f"Cache invalidated: key={key}")
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with `prefix`."""
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            self._remove(key)
        if keys:
            logger.info(f"Cache invalidated {len(keys)} entries with prefix '{prefix}'")
        return len(keys)

    def clear(self) -> int:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._total_bytes = 0
        logger.info(f"Cache cleared: {count} entries")
        return count

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_bytes -= entry.estimated_size
        return True

    def _evict_oldest(self, target_bytes: int) -> int:
        """Evict in ascending created_at order until usage <= target_bytes."""
        evicted = 0
        for entry in sorted(self._entries.values(), key=lambda e: e.created_at):
            if self._total_bytes <= target_bytes:
                break
            self._remove(entry.key)
            evicted += 1
        self._stats["evictions"] += evicted
        return evicted

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self, aggressive: bool = False) -> int:
        """
        Drop entries past their retention horizon, then enforce the budget.

        If usage is still above budget (or `aggressive` is set, as under memory
        pressure) the oldest entries go until usage is at most half the budget.
        Returns the number of entries removed.
        """
        now = self._clock()
        expired = [e.key for e in self._entries.values() if e.age(now) >= e.stale_ttl]
        for key in expired:
            self._remove(key)
        self._stats["expired"] += len(expired)

        evicted = 0
        if aggressive or self._total_bytes > self._budget:
            evicted = self._evict_oldest(target_bytes=self._budget // 2)

        self._stats["sweeps"] += 1
        logger.info(
            f"Cache sweep: expired={len(expired)} evicted={evicted} entries={len(self._entries)} "
            f"bytes={self._total_bytes}/{self._budget} aggressive={aggressive}"
        )
        return len(expired) + evicted

    def memory_pressure_check(self) -> bool:
        """
        Sample process memory; above the high-water mark, sweep out of cycle.

        Returns True if a pressure sweep ran.
        """
        if not self._heap_ceiling:
            return False

        used = self._memory_probe()
        high_water = int(self._heap_ceiling * self._high_water_ratio)
        if used <= high_water:
            return False

        self._stats["pressure_sweeps"] += 1
        logger.warning(
            f"CacheMemoryPressure: rss={used} high_water={high_water} "
            f"cache_bytes={self._total_bytes}, sweeping"
        )
        self.sweep(aggressive=True)
        return True

    def start(self):
        """Start the periodic sweep and memory-pressure drivers on the running loop."""
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._every(self._sweep_interval, self.sweep)),
            loop.create_task(self._every(self._memory_check_interval, self.memory_pressure_check)),
        ]

    async def stop(self):
        """Cancel the periodic drivers."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _every(self, interval: float, action: Callable[[], Any]):
        while True:
            await asyncio.sleep(interval)
            try:
                action()
            except Exception as e:
                logger.error(f"Cache maintenance failed: {type(e).__name__}: {e}")

    def get_stats(self) -> Dict:
        """Get cache statistics for monitoring."""
        return {
            **self._stats,
            "entries": len(self._entries),
            "bytes": self._total_bytes,
            "memory_budget_bytes": self._budget,
            "max_entry_bytes": self._max_entry_bytes,
            "utilization": f"{self._total_bytes / max(1, self._budget):.1%}",
        }
