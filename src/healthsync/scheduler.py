"""Cancellable periodic ticker that drives sync cycles.

Ticks fire on a fixed interval whether or not the previous callback has
finished; the callback itself decides whether an overlapping tick is a
no-op.  Tests call ``tick()`` directly instead of waiting on the clock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger("healthsync.scheduler")

DEFAULT_INTERVAL_SECONDS = 30.0


class SyncTicker:
    """Fire ``callback`` every ``interval_seconds`` on the running event loop.

    Usage::

        ticker = SyncTicker(coordinator.perform_sync, interval_seconds=30)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._callback = callback
        self._interval = float(interval_seconds)
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, fire_immediately: bool = False) -> None:
        """Begin ticking.  Must be called from within a running event loop."""
        if self.running:
            return
        logger.info("Sync ticker started (every %.0fs)", self._interval)
        if fire_immediately:
            self._fire()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop ticking.  A callback already in flight is allowed to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync ticker stopped")

    def set_interval(self, seconds: float) -> None:
        """Change the interval; a running ticker restarts its countdown."""
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self._interval = float(seconds)
        logger.info("Sync interval set to %.0fs", seconds)
        if self.running:
            self._task.cancel()
            self._task = asyncio.create_task(self._run())

    async def tick(self) -> None:
        """Run the callback once now and wait for it."""
        await self._invoke()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._fire()

    def _fire(self) -> None:
        task = asyncio.create_task(self._invoke())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _invoke(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Scheduled sync failed")
