"""
ReadingBuffer — batches sensor readings for the persistence service.

Readings are removed from the buffer only after the batch write succeeded.
A failed write leaves them in place; the next flush (threshold reached again,
or the session ending) retries them together with anything added since.
Background flushes write max_size readings at a time until fewer remain.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from runtracker.tracking.types import SensorReading

logger = logging.getLogger(__name__)

BatchWriter = Callable[[List[SensorReading]], Awaitable[None]]


class ReadingBuffer:
    """In-memory reading list with size-triggered background flushes."""

    def __init__(self, write: BatchWriter, max_size: int = 10, max_retained: int = 50000):
        """
        Args:
            write: async callable persisting one batch (raises on failure).
            max_size: pending count that triggers a background flush.
            max_retained: cap on readings kept while storage keeps failing;
                beyond it the oldest are dropped and an error is logged.
        """
        self._write = write
        self.max_size = max_size
        self.max_retained = max_retained
        self._pending: List[SensorReading] = []
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> List[SensorReading]:
        return list(self._pending)

    def add(self, reading: SensorReading) -> None:
        """Queue a reading; start a background flush once max_size are pending."""
        self._pending.append(reading)

        overflow = len(self._pending) - self.max_retained
        if overflow > 0 and not self._lock.locked():
            del self._pending[:overflow]
            logger.error(
                "Reading buffer over %d pending, dropped %d oldest readings",
                self.max_retained,
                overflow,
            )

        if len(self._pending) >= self.max_size and not self._tasks:
            task = asyncio.create_task(self._background_flush())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def flush(self) -> int:
        """
        Write everything pending as one batch.

        Returns:
            Number of readings written (0 when empty or when the write failed).
        """
        return await self._write_head(None)

    async def join(self) -> None:
        """Wait for in-flight background flushes."""
        while self._tasks:
            tasks = list(self._tasks)
            await asyncio.gather(*tasks)
            self._tasks.difference_update(tasks)

    def clear(self) -> None:
        self._pending.clear()

    async def _write_head(self, limit: Optional[int]) -> int:
        async with self._lock:
            batch = self._pending[:limit]
            if not batch:
                return 0
            try:
                await self._write(batch)
            except Exception:
                logger.exception(
                    "Batch write of %d readings failed; keeping them for retry", len(batch)
                )
                return 0
            # Readings added during the write sit after the batch
            del self._pending[: len(batch)]
            return len(batch)

    async def _background_flush(self) -> None:
        # A burst can pile up several batches before this task first runs
        while len(self._pending) >= self.max_size:
            written = await self._write_head(self.max_size)
            if not written:
                break
            logger.debug("Flushed %d readings", written)
