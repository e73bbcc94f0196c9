"""
Rate-Limited Dispatch Queue - Serialize and pace calls to one upstream

WHY: Raydium and the price APIs throttle aggressively and without documentation.
Reacting to 429s after the fact leads to retry storms; serializing calls with a
fixed gap is cheaper and predictable.

DESIGN:
- Strict FIFO on an asyncio.Queue, no reordering
- Exactly one worker task per queue, started on first use
- A minimum gap is enforced between the end of one call and the start of the
  next; an idle queue dispatches immediately
- Each call's outcome (value or exception) goes to that call's own future, so
  one failure never stalls the calls behind it
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import GatewayClosedError

logger = logging.getLogger(__name__)


@dataclass
class QueuedCall:
    """A pending upstream call owned by the queue until the worker runs it."""
    producer: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class RateLimitedDispatchQueue:
    """
    FIFO queue drained by a single paced worker.

    Usage:
        queue = RateLimitedDispatchQueue("raydium", min_delay=1.0)
        pools = await queue.enqueue(lambda: client.request("GET", url))
    """

    def __init__(self, name: str, min_delay: float = 1.0):
        self.name = name
        self._min_delay = max(0.0, min_delay)
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None
        self._closed = False

        # Statistics
        self._stats = {
            "enqueued": 0,
            "dispatched": 0,
            "failed": 0,
            "skipped": 0,       # caller cancelled before its turn
            "total_wait_ms": 0,
            "max_depth": 0,
        }

    @property
    def min_delay(self) -> float:
        return self._min_delay

    @property
    def depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def enqueue(self, producer: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        """
        Append `producer` to the tail of the queue.

        Returns a future that resolves with the producer's result (or exception)
        once the worker has executed it.
        """
        if self._closed:
            raise GatewayClosedError(self.name)

        loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue()

        call = QueuedCall(producer=producer, future=loop.create_future())
        self._queue.put_nowait(call)

        self._stats["enqueued"] += 1
        self._stats["max_depth"] = max(self._stats["max_depth"], self._queue.qsize())
        logger.debug(f"Queue enqueue: queue={self.name} depth={self._queue.qsize()}")

        self._ensure_worker()
        return call.future

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self):
        """Worker loop: pop, pace, execute, repeat."""
        while True:
            call: QueuedCall = await self._queue.get()
            try:
                if call.future.done():
                    self._stats["skipped"] += 1
                    logger.debug(f"Queue skip (caller gone): queue={self.name}")
                    continue

                await self._wait_for_turn()

                wait_ms = int((time.monotonic() - call.enqueued_at) * 1000)
                self._stats["total_wait_ms"] += wait_ms
                self._stats["dispatched"] += 1
                logger.debug(f"Queue dispatch: queue={self.name} waited_ms={wait_ms} depth={self._queue.qsize()}")

                try:
                    result = await call.producer()
                except Exception as e:
                    self._stats["failed"] += 1
                    logger.warning(f"Queued call failed: queue={self.name} error={type(e).__name__}: {e}")
                    if not call.future.done():
                        call.future.set_exception(e)
                else:
                    if not call.future.done():
                        call.future.set_result(result)
                finally:
                    self._last_finished = time.monotonic()
            except asyncio.CancelledError:
                # Popped but unfinished when the worker was stopped
                if not call.future.done():
                    call.future.set_exception(GatewayClosedError(self.name))
                raise
            finally:
                self._queue.task_done()

    async def _wait_for_turn(self):
        if self._last_finished is None or self._min_delay <= 0:
            return
        remaining = self._min_delay - (time.monotonic() - self._last_finished)
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def close(self):
        """Stop the worker and fail every call still waiting in the queue."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

        if self._queue is not None:
            while not self._queue.empty():
                call = self._queue.get_nowait()
                if not call.future.done():
                    call.future.set_exception(GatewayClosedError(self.name))
                self._queue.task_done()

    def get_stats(self) -> Dict:
        """Get queue statistics."""
        avg_wait = self._stats["total_wait_ms"] / max(1, self._stats["dispatched"])

        return {
            **self._stats,
            "name": self.name,
            "depth": self.depth,
            "min_delay": self._min_delay,
            "avg_wait_ms": f"{avg_wait:.0f}",
        }
