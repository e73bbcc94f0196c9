"""
Single-Flight Registry - Deduplicate concurrent identical requests

WHY: When 50 dashboards open at once with a cold cache, the Raydium listing
should be downloaded once, not 50 times.
SOLUTION: First caller starts the producer, everyone else awaits the same task.

DESIGN:
- Track "in-flight" producers by key
- Concurrent callers for the key share one asyncio.Task
- The entry is dropped before the task settles, so a caller arriving after
  settlement always starts a new generation
- Callers await through asyncio.shield: a caller that gives up does not cancel
  the shared work for everyone else
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class InFlightEntry:
    """A producer that is currently running for a key."""
    task: asyncio.Task
    started_at: float
    waiter_count: int = 1


def _retrieve_exception(task: asyncio.Task):
    # Every waiter may have given up; mark the outcome as observed anyway
    if not task.cancelled():
        task.exception()


class SingleFlightRegistry:
    """
    At most one producer execution per key at any time.

    Usage:
        registry = SingleFlightRegistry()
        pools = await registry.run("pools:raydium", fetch_pools)
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightEntry] = {}

        self._stats = {
            "initiated": 0,   # producer executions started
            "coalesced": 0,   # callers that joined an existing execution
        }

    async def run(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        """
        Join the in-flight execution for `key`, or start one with `producer`.

        All callers of one generation receive the same result or the same exception.
        """
        entry = self._in_flight.get(key)
        if entry is not None:
            entry.waiter_count += 1
            self._stats["coalesced"] += 1
            logger.debug(f"Coalescing request: key={key} waiters={entry.waiter_count}")
        else:
            task = asyncio.get_running_loop().create_task(self._execute(key, producer))
            task.add_done_callback(_retrieve_exception)
            entry = InFlightEntry(task=task, started_at=time.monotonic())
            self._in_flight[key] = entry
            self._stats["initiated"] += 1
            logger.debug(f"Initiating producer: key={key}")

        return await asyncio.shield(entry.task)

    async def _execute(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await producer()
        finally:
            entry = self._in_flight.get(key)
            if entry is not None and entry.task is asyncio.current_task():
                del self._in_flight[key]
                if entry.waiter_count > 1:
                    logger.info(f"Coalesced {entry.waiter_count} requests: key={key}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def active_keys(self) -> List[str]:
        return list(self._in_flight.keys())

    def get_stats(self) -> Dict:
        """Get coalescing statistics."""
        total = self._stats["initiated"] + self._stats["coalesced"]
        savings_rate = self._stats["coalesced"] / max(1, total)

        return {
            **self._stats,
            "in_flight": len(self._in_flight),
            "savings_rate": f"{savings_rate:.1%}",
        }
