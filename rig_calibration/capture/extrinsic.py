"""
Synchronized multi-camera capture for extrinsic calibration.

One ``capture_frame()`` grabs a frame from every camera slot, submits all of
them to the backend concurrently and joins the results. Only when every
camera reports a confirmed detection is a calibration job started; its
progress is then polled once per interval until it completes or fails.

Job state machine::

    IDLE -> DETECTING -> CALIBRATING -> COMPLETE
            DETECTING -> ERROR
                         CALIBRATING -> ERROR
    any  -> IDLE (reset / stop)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from rig_calibration.backend.client import CalibrationBackendClient
from rig_calibration.backend.models import BackendReply, DetectionResult
from rig_calibration.core.config import PollingSettings
from rig_calibration.core.errors import CalibrationError, CaptureRejectedError, DetectionError
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationKind, NotificationSink
from rig_calibration.core.repeating_task import RepeatingTask
from rig_calibration.devices.registry import DeviceRegistry

logger = get_module_logger("ExtrinsicCapture")

FAILED_ALL_VIEWS = "Failed to detect markers in all camera views"
DETECTING_MESSAGE = "Detecting markers across all cameras..."
STARTING_MESSAGE = "Starting calibration for all cameras..."
COMPLETE_MESSAGE = "Extrinsic calibration completed successfully for all cameras"

# Returns the encoded image (JPEG data URL) for a camera index.
FrameSource = Callable[[int], Awaitable[str]]
Reinitialize = Callable[[], Awaitable[None]]


class JobStatus(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    CALIBRATING = "calibrating"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(slots=True)
class CalibrationJob:
    status: JobStatus = JobStatus.IDLE
    progress: int = 0
    message: str = ""

    @property
    def active(self) -> bool:
        return self.status in (JobStatus.DETECTING, JobStatus.CALIBRATING)

    @property
    def terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETE, JobStatus.ERROR)


class ExtrinsicCaptureCoordinator:
    """Drives the all-cameras detection round and the calibration job it starts."""

    # Polls allowed before the backend reports the job as running.
    STARTUP_GRACE_POLLS = 5

    def __init__(
        self,
        registry: DeviceRegistry,
        backend: CalibrationBackendClient,
        frame_source: FrameSource,
        *,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[PollingSettings] = None,
        reinitialize: Optional[Reinitialize] = None,
        camera_indices: Sequence[int] = (0, 1, 2),
    ) -> None:
        self._registry = registry
        self._backend = backend
        self._frame_source = frame_source
        self._notifier = notifier or LoggingNotificationSink()
        self._settings = settings or PollingSettings()
        self._reinitialize = reinitialize
        self._camera_indices: Tuple[int, ...] = tuple(camera_indices)
        self._job = CalibrationJob()
        self._seen_running = False
        self._poller = RepeatingTask("ProgressPoller", self._settings.interval_s, self._poll_progress)
        self.last_results: List[DetectionResult] = []

    @property
    def job(self) -> CalibrationJob:
        """A copy of the current job record."""
        return replace(self._job)

    @property
    def camera_indices(self) -> Tuple[int, ...]:
        return self._camera_indices

    @property
    def polling(self) -> bool:
        return self._poller.running

    @property
    def poll_count(self) -> int:
        return self._poller.tick_count

    async def capture_frame(self) -> CalibrationJob:
        """
        Detect markers on every camera at once and start calibration on full success.

        Raises:
            CaptureRejectedError: too few cameras, or a job is already active
            DetectionError: at least one camera did not confirm a detection
            CalibrationError: the backend refused to start the job
        """
        required = len(self._camera_indices)
        available = len(self._registry.devices)
        if available < required:
            self._reject(f"At least {required} cameras are required, found {available}")
        if self._job.active:
            self._reject("A calibration job is already in progress")

        self._seen_running = False
        self.last_results = []
        self._set_job(JobStatus.DETECTING, 0, DETECTING_MESSAGE)

        try:
            outcomes = await asyncio.gather(
                *(self._detect(index) for index in self._camera_indices),
                return_exceptions=True,
            )
        except asyncio.CancelledError:
            self._set_job(JobStatus.IDLE, 0, "Capture cancelled")
            raise

        failed_index: Optional[int] = None
        backend_message: Optional[str] = None
        for index, outcome in zip(self._camera_indices, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Camera %d: frame capture failed: %s", index + 1, outcome)
            else:
                self.last_results.append(outcome)
                if outcome.ok:
                    continue
                logger.warning("Camera %d: %s", index + 1, outcome.message)
                if not outcome.success and outcome.message and backend_message is None:
                    backend_message = outcome.message
            if failed_index is None:
                failed_index = index

        if failed_index is not None:
            message = backend_message or FAILED_ALL_VIEWS
            self._fail(message)
            raise DetectionError(message, camera_index=failed_index)

        self._set_job(JobStatus.CALIBRATING, 50, STARTING_MESSAGE)
        try:
            reply = await self._backend.start_calibration(list(self._camera_indices))
        except asyncio.CancelledError:
            self._set_job(JobStatus.IDLE, 0, "Capture cancelled")
            raise
        if not reply.success:
            message = reply.message or "Extrinsic calibration failed to start"
            self._fail(message)
            raise CalibrationError(message)

        self._set_job(JobStatus.CALIBRATING, 50, reply.message)
        self._notifier.notify(NotificationKind.INFO, "Calibration Started", reply.message)
        self._poller.start()
        return self.job

    async def refresh(self) -> bool:
        """Re-initialize every camera slot; usable while idle or after an error."""
        if self._reinitialize is None:
            return False
        try:
            await self._reinitialize()
        except Exception as exc:
            message = str(exc) or "Failed to refresh camera feeds"
            logger.error("Camera refresh failed: %s", message)
            self._notifier.notify(NotificationKind.ERROR, "Error", message)
            return False
        self._notifier.notify(NotificationKind.SUCCESS, "Success", "Camera feeds refreshed successfully")
        return True

    async def stop(self) -> BackendReply:
        """Abort the backend job, stop polling and return to IDLE."""
        await self._poller.stop()
        reply = await self._backend.stop()
        if reply.success:
            self._set_job(JobStatus.IDLE, 0, reply.message)
            self._notifier.notify(NotificationKind.INFO, "Calibration Stopped", reply.message)
        else:
            self._fail(reply.message or "Failed to stop extrinsic calibration")
        return reply

    async def reset(self) -> None:
        await self._poller.stop()
        self._set_job(JobStatus.IDLE, 0, "")

    async def wait_for_completion(self, timeout: Optional[float] = None) -> CalibrationJob:
        """Wait until polling ends (job complete, failed or stopped)."""
        if timeout is None:
            await self._poller.wait()
        else:
            await asyncio.wait_for(self._poller.wait(), timeout=timeout)
        return self.job

    async def close(self) -> None:
        await self._poller.stop()

    # ------------------------------------------------------------------
    # Internals

    async def _detect(self, index: int) -> DetectionResult:
        image = await self._frame_source(index)
        return await self._backend.detect_markers(image, index)

    async def _poll_progress(self) -> bool:
        try:
            report = await self._backend.calibration_progress()
        except CalibrationError as exc:
            self._fail(str(exc))
            return False

        if self._job.status is not JobStatus.CALIBRATING:
            return False

        if report.progress >= 100:
            self._set_job(JobStatus.COMPLETE, 100, report.message or COMPLETE_MESSAGE)
            self._notifier.notify(NotificationKind.SUCCESS, "Success", self._job.message)
            return False

        if report.is_running:
            self._seen_running = True
        elif self._seen_running or self._poller.tick_count >= self.STARTUP_GRACE_POLLS:
            self._fail(report.message or f"Calibration stopped at {report.progress}%")
            return False

        self._set_job(JobStatus.CALIBRATING, report.progress, report.message or self._job.message)
        return True

    def _reject(self, message: str) -> None:
        logger.warning("Capture refused: %s", message)
        self._notifier.notify(NotificationKind.ERROR, "Error", message)
        raise CaptureRejectedError(message)

    def _fail(self, message: str) -> None:
        self._set_job(JobStatus.ERROR, 0, message)
        logger.error("Extrinsic calibration failed: %s", message)
        self._notifier.notify(NotificationKind.ERROR, "Error", message)

    def _set_job(self, status: JobStatus, progress: int, message: str) -> None:
        if status is not self._job.status:
            logger.info("Job %s -> %s", self._job.status.value, status.value)
        self._job = CalibrationJob(status=status, progress=progress, message=message)


__all__ = [
    "CalibrationJob",
    "ExtrinsicCaptureCoordinator",
    "FrameSource",
    "JobStatus",
]
