"""Cancellable periodic task with explicit start/stop."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from .asyncio_utils import cancel_and_wait, create_logged_task
from .logging_utils import get_module_logger

logger = get_module_logger("RepeatingTask")

# Returns True to keep running, False to stop.
TickCallback = Callable[[], Awaitable[bool]]


class RepeatingTask:
    """
    Runs ``tick`` every ``interval`` seconds until it returns False or stop() is called.

    The first tick runs one interval after start(). Only one loop exists per
    instance; start() while running is a no-op.
    """

    def __init__(self, name: str, interval: float, tick: TickCallback) -> None:
        self._name = name
        self._interval = interval
        self._tick = tick
        self._task: Optional[asyncio.Task] = None
        self._ticks = 0
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._ticks

    def start(self) -> None:
        if self.running:
            logger.debug("%s already running", self._name)
            return
        self._ticks = 0
        self._stop_requested = False
        self._task = create_logged_task(self._loop(), name=self._name, logger=logger)
        logger.debug("%s started (interval=%.2fs)", self._name, self._interval)

    async def stop(self) -> None:
        self._stop_requested = True
        task = self._task
        if task is None:
            return
        if task is asyncio.current_task():
            # Called from inside a tick; the loop exits once the tick returns.
            return
        await cancel_and_wait(task)
        logger.debug("%s stopped after %d tick(s)", self._name, self._ticks)

    async def wait(self) -> None:
        """Wait until the loop ends on its own or is stopped."""
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _loop(self) -> None:
        while not self._stop_requested:
            await asyncio.sleep(self._interval)
            self._ticks += 1
            keep_going = await self._tick()
            if not keep_going or self._stop_requested:
                logger.debug("%s finished after %d tick(s)", self._name, self._ticks)
                return


__all__ = ["RepeatingTask", "TickCallback"]
