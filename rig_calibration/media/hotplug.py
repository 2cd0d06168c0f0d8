"""
Video device hotplug monitor.

Opening cameras to find out whether the topology changed is slow and makes
camera LEDs flash. Instead this monitor periodically lists the video device
nodes (no hardware interaction) and only notifies subscribers when the set
of nodes changes. Subscribers then run their own enumeration.
"""

import asyncio
import glob
from typing import Callable, List, Optional, Tuple

from rig_calibration.core.asyncio_utils import cancel_and_wait
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.media.base import DeviceChangeCallback

logger = get_module_logger("DeviceChangeMonitor")

VIDEO_NODE_PATTERN = "/dev/video*"


def list_video_nodes(pattern: str = VIDEO_NODE_PATTERN) -> Tuple[str, ...]:
    """Return the sorted video device nodes currently present."""
    return tuple(sorted(glob.glob(pattern)))


class DeviceChangeMonitor:
    """
    Watches the video device topology and notifies subscribers on change.

    Usage:
        monitor = DeviceChangeMonitor()
        monitor.subscribe(registry.refresh)
        await monitor.start()
        ...
        await monitor.stop()
    """

    DEFAULT_CHECK_INTERVAL = 1.0

    def __init__(
        self,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        *,
        snapshot: Callable[[], Tuple[str, ...]] = list_video_nodes,
    ):
        self._check_interval = check_interval
        self._snapshot = snapshot
        self._last_snapshot: Tuple[str, ...] = ()
        self._subscribers: List[DeviceChangeCallback] = []
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def nodes(self) -> Tuple[str, ...]:
        """Last observed set of device nodes."""
        return self._last_snapshot

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: DeviceChangeCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)
            logger.debug("Device change subscriber added (total: %d)", len(self._subscribers))

    def unsubscribe(self, callback: DeviceChangeCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            logger.debug("Device change subscriber removed (total: %d)", len(self._subscribers))

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._last_snapshot = await asyncio.to_thread(self._snapshot)
        logger.info("Device change monitor started (%d video node(s))", len(self._last_snapshot))
        self._task = asyncio.create_task(self._monitor_loop())

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        task, self._task = self._task, None
        await cancel_and_wait(task)
        logger.info("Device change monitor stopped")

    async def check_now(self) -> bool:
        """Take one snapshot; notify subscribers and return True if it changed."""
        current = await asyncio.to_thread(self._snapshot)
        if current == self._last_snapshot:
            return False

        added = sorted(set(current) - set(self._last_snapshot))
        removed = sorted(set(self._last_snapshot) - set(current))
        logger.info("Video device change detected: added=%s removed=%s", added, removed)
        self._last_snapshot = current
        await self._notify_subscribers()
        return True

    async def _monitor_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._check_interval)
                await self.check_now()
            except asyncio.CancelledError:
                break
            except OSError as e:
                logger.error("Error in device change monitor: %s", e)

    async def _notify_subscribers(self) -> None:
        # One failing subscriber must not starve the others.
        for callback in list(self._subscribers):
            try:
                await callback()
            except Exception as e:
                logger.error("Error in device change callback: %s", e)


__all__ = ["DeviceChangeMonitor", "list_video_nodes", "VIDEO_NODE_PATTERN"]
