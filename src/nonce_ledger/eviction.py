"""Eviction of consumed nonces.

Two mechanisms, both best-effort:

- EvictionScheduler: one task per recorded nonce that deletes exactly that
  record once the retention window has elapsed. Tasks are tracked by nonce
  value so shutdown can cancel them instead of orphaning timers.
- Sweeper: periodic bulk delete of records older than the retention window.
  Per-record tasks die with the process; the sweeper catches what they miss.

Eviction never decides admission. A record that outlives its window only
wastes space, so failures here are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .exceptions import InvalidArgumentError
from .storage.base import NonceRecord, NonceStore

if TYPE_CHECKING:
    from .ledger import NonceLedger

logger = logging.getLogger(__name__)


class EvictionScheduler:
    """Cancellable registry of pending per-record deletions.

    Args:
        store: Store to delete from.
        table_name: Table holding the records.
    """

    def __init__(self, store: NonceStore, table_name: str) -> None:
        self._store = store
        self._table_name = table_name
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, value: object) -> bool:
        return value in self._tasks

    def schedule(self, record: NonceRecord, delay: float) -> asyncio.Task[None]:
        """Delete ``record`` after ``delay`` seconds.

        Scheduling a value that already has a pending deletion replaces it.
        Must be called from a running event loop.
        """
        previous = self._tasks.pop(record.value, None)
        if previous is not None:
            previous.cancel()

        task = asyncio.create_task(self._evict_after(record, delay), name=f"evict-nonce:{record.value}")
        self._tasks[record.value] = task
        task.add_done_callback(lambda t, value=record.value: self._forget(value, t))
        return task

    def cancel(self, value: str) -> bool:
        """Cancel the pending deletion of ``value``. Returns False if none was pending."""
        task = self._tasks.pop(value, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every pending deletion and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d pending nonce evictions", len(tasks))

    def _forget(self, value: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(value) is task:
            del self._tasks[value]

    async def _evict_after(self, record: NonceRecord, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            removed = await self._store.delete(self._table_name, record.value, record.timestamp)
        except Exception as e:  # noqa: BLE001 - eviction is best-effort
            logger.warning("Failed to evict nonce %s from %s: %s", record.value, self._table_name, e)
            return
        logger.debug("Evicted nonce %s from %s (%d row(s))", record.value, self._table_name, removed)


class Sweeper:
    """Background task that periodically runs NonceLedger.sweep().

    Args:
        ledger: Ledger whose table is swept.
        interval: Seconds between sweeps.
    """

    def __init__(self, ledger: NonceLedger, interval: float) -> None:
        if isinstance(interval, bool) or not isinstance(interval, int | float) or interval <= 0:
            raise InvalidArgumentError(
                f"The sweep interval must be a positive number ; {interval!r} given.",
                field="interval",
                value=interval,
            )
        self.ledger = ledger
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Nonce sweeper started, interval=%ss", self.interval)

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Nonce sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.ledger.sweep()
            except Exception as e:  # noqa: BLE001 - sweep loop must not crash
                logger.error("Nonce sweep failed: %s", e)

            await asyncio.sleep(self.interval)
