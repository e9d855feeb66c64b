"""
Module: scheduler.py
Description: Periodic retry sweep for pending events.

The scheduler only decides *when* to sweep; selecting eligible events and
re-dispatching them is delegated to the delivery manager so all state
access stays under the manager's lock.
"""

import asyncio
from typing import Callable, Optional

from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)


class RetryScheduler:
    """Fixed-interval sweep loop with a stop signal."""

    def __init__(self, sweep: Callable[[], int], interval: float = 2.0):
        """
        Args:
            sweep: Function running one sweep, returns fan-outs scheduled
            interval: Seconds between sweeps
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._sweep = sweep
        self.interval = interval
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop as an asyncio task."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Retry scheduler started", interval_seconds=self.interval)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.interval + 1.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Retry scheduler stopped")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                scheduled = self._sweep()
                if scheduled:
                    logger.info("Retry sweep scheduled events", count=scheduled)
            except Exception as e:
                logger.error("Retry sweep failed", error=str(e), error_type=type(e).__name__)
