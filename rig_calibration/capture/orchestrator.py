"""
Intrinsic capture gating.

The orchestrator does not talk to the backend itself: callers hand it a
``submit`` coroutine that grabs and submits the current frame. It decides
whether a capture may run, and counts it only when the backend confirmed a
detection.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional

from rig_calibration.backend.models import DetectionResult
from rig_calibration.core.config import CaptureSettings
from rig_calibration.core.errors import CaptureRejectedError, DetectionError, RigError
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationKind, NotificationSink

from .counters import CaptureCounterMap

logger = get_module_logger("CaptureOrchestrator")

DetectionSubmit = Callable[[], Awaitable[DetectionResult]]


class CaptureOrchestrator:
    """Tracks per-camera capture counts against the target and gates captures."""

    def __init__(
        self,
        counters: Optional[CaptureCounterMap] = None,
        *,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[CaptureSettings] = None,
    ) -> None:
        self._settings = settings or CaptureSettings()
        self._counters = counters or CaptureCounterMap(
            range(self._settings.num_cameras), self._settings.target_per_camera
        )
        self._notifier = notifier or LoggingNotificationSink()
        self._active = self._counters.slots[0]
        self._in_flight: set[int] = set()
        # Bumped on every switch so a capture finishing after a reset is not counted.
        self._epochs: Dict[int, int] = {slot: 0 for slot in self._counters.slots}
        self.last_detection: Dict[int, DetectionResult] = {}

    @property
    def active_index(self) -> int:
        return self._active

    @property
    def target(self) -> int:
        return self._counters.target

    @property
    def counters(self) -> CaptureCounterMap:
        return self._counters

    def count(self, index: int) -> int:
        return self._counters.get(index)

    def counts(self) -> Dict[int, int]:
        return self._counters.snapshot()

    def is_capturing(self, index: int) -> bool:
        return index in self._in_flight

    def switch_camera(self, index: int) -> None:
        """Make ``index`` the active slot and restart its count from zero."""
        self._counters.reset(index)
        self._epochs[index] += 1
        previous, self._active = self._active, index
        logger.info("Switched camera %d -> %d (count reset)", previous + 1, index + 1)

    async def capture(self, index: int, submit: DetectionSubmit) -> int:
        """
        Run one capture on slot ``index`` and return the new count.

        Raises:
            CaptureRejectedError: the slot reached its target or a capture is already in flight
            DetectionError: the backend did not confirm a detection
        """
        if index not in self._counters:
            raise ValueError(f"Unknown camera slot: {index}")
        if self._counters.is_complete(index):
            logger.warning("Camera %d: capture rejected, target of %d reached", index + 1, self.target)
            raise CaptureRejectedError(f"Camera {index + 1} already has {self.target} captures")
        if index in self._in_flight:
            logger.warning("Camera %d: capture rejected, one is already in flight", index + 1)
            raise CaptureRejectedError(f"A capture for Camera {index + 1} is already in progress")

        self._in_flight.add(index)
        epoch = self._epochs[index]
        try:
            result = await submit()
        except RigError as exc:
            self._notifier.notify(NotificationKind.ERROR, "Capture Error", str(exc))
            raise
        except Exception as exc:
            message = str(exc) or "Failed to process image"
            logger.error("Camera %d: capture failed: %s", index + 1, message)
            self._notifier.notify(NotificationKind.ERROR, "Capture Error", message)
            raise DetectionError(message, camera_index=index) from exc
        finally:
            self._in_flight.discard(index)

        self.last_detection[index] = result
        if not result.ok:
            message = result.message or "Failed to detect markers"
            logger.warning("Camera %d: detection not confirmed: %s", index + 1, message)
            self._notifier.notify(NotificationKind.ERROR, "Capture Error", message)
            raise DetectionError(message, camera_index=index)

        if self._epochs[index] != epoch:
            logger.info("Camera %d: capture finished after a camera switch, not counted", index + 1)
            return self._counters.get(index)

        count = self._counters.increment(index)
        logger.info("Camera %d: capture %d/%d", index + 1, count, self.target)
        self._notifier.notify(
            NotificationKind.SUCCESS,
            "Success",
            f"Captured image {count} of {self.target} for Camera {index + 1}",
        )
        return count


__all__ = ["CaptureOrchestrator", "DetectionSubmit"]
