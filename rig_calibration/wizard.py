"""
Calibration wizard.

Composes the device registry, one stream controller and sink per camera
slot, the intrinsic capture orchestrator, the extrinsic coordinator and the
training image store. Slots are kept in step with the device list: a slot
whose device changed is re-acquired, a slot without a device is disposed.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from rig_calibration.backend.client import CalibrationBackendClient
from rig_calibration.backend.models import DetectionResult, QualityAssessment
from rig_calibration.capture.extrinsic import CalibrationJob, ExtrinsicCaptureCoordinator
from rig_calibration.capture.frames import draw_markers, encode_frame_jpeg, encode_jpeg_bytes
from rig_calibration.capture.orchestrator import CaptureOrchestrator
from rig_calibration.capture.training import TrainingCaptureStore
from rig_calibration.core.asyncio_utils import cancel_and_wait, create_logged_task
from rig_calibration.core.config import RigConfig
from rig_calibration.core.errors import CaptureRejectedError, NoDeviceError, StreamError
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationSink
from rig_calibration.devices.registry import CameraDevice, DeviceRegistry
from rig_calibration.media.base import CameraPlatform, LiveStream, VideoSink
from rig_calibration.streams.controller import SlotState, StreamController

logger = get_module_logger("CalibrationWizard")

STEPS: Tuple[str, ...] = (
    "Camera Setup",
    "Intrinsic Calibration",
    "Extrinsic Calibration",
    "Board Registration",
    "Verification",
)

SinkFactory = Callable[[int], VideoSink]


def _default_sink(index: int) -> VideoSink:
    from rig_calibration.media.opencv import FrameSink
    return FrameSink(f"Camera {index + 1}")


class CalibrationWizard:
    """Owns every camera slot and the capture components of one calibration session."""

    def __init__(
        self,
        platform: CameraPlatform,
        backend: CalibrationBackendClient,
        *,
        config: Optional[RigConfig] = None,
        notifier: Optional[NotificationSink] = None,
        sink_factory: SinkFactory = _default_sink,
    ) -> None:
        self.config = config or RigConfig()
        self._notifier = notifier or LoggingNotificationSink()
        self._backend = backend
        num_cameras = self.config.capture.num_cameras

        self.registry = DeviceRegistry(
            platform,
            notifier=self._notifier,
            settings=self.config.registry,
            stream_settings=self.config.stream,
        )
        self.sinks: List[VideoSink] = [sink_factory(index) for index in range(num_cameras)]
        self.controllers: List[StreamController] = [
            StreamController(
                index,
                platform,
                notifier=self._notifier,
                settings=self.config.stream,
                on_stream=self._on_stream,
            )
            for index in range(num_cameras)
        ]
        self.orchestrator = CaptureOrchestrator(notifier=self._notifier, settings=self.config.capture)
        self.extrinsic = ExtrinsicCaptureCoordinator(
            self.registry,
            backend,
            self._grab_encoded,
            notifier=self._notifier,
            settings=self.config.polling,
            reinitialize=self.reinitialize_cameras,
            camera_indices=range(num_cameras),
        )
        self.training = TrainingCaptureStore(
            self._grab_frame,
            camera_indices=range(num_cameras),
            notifier=self._notifier,
            jpeg_quality=self.config.capture.jpeg_quality,
        )

        self.streams: Dict[str, LiveStream] = {}
        self.last_frames: Dict[int, np.ndarray] = {}
        self._step = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._empty_refresh_done = False
        self.registry.add_listener(self._on_devices_changed)

    # ------------------------------------------------------------------
    # Step sequencing

    @property
    def step(self) -> int:
        return self._step

    @property
    def step_name(self) -> str:
        return STEPS[self._step]

    def next_step(self) -> int:
        self._step = min(self._step + 1, len(STEPS) - 1)
        return self._step

    def previous_step(self) -> int:
        self._step = max(self._step - 1, 0)
        return self._step

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def devices(self) -> Tuple[CameraDevice, ...]:
        return self.registry.devices

    async def start(self) -> Tuple[CameraDevice, ...]:
        """Enumerate cameras and mount one stream per slot."""
        return await self.registry.start()

    async def wait_for_cameras(self) -> List[SlotState]:
        """Wait until every slot's pending acquisition has settled."""
        return list(await asyncio.gather(*(controller.wait() for controller in self.controllers)))

    async def reinitialize_cameras(self) -> None:
        """Tear down every slot, re-enumerate and wait for the slots to come back.

        Raises:
            NoDeviceError: no camera is available after re-enumeration
            StreamError: a slot with a device failed to become ready
        """
        for controller in self.controllers:
            await controller.dispose()
        devices = await self.registry.refresh()
        if not devices:
            raise NoDeviceError("No cameras available after refresh")
        states = await self.wait_for_cameras()
        failed = [
            index for index, state in enumerate(states)
            if index < len(devices) and state is not SlotState.READY
        ]
        if failed:
            names = ", ".join(f"Camera {index + 1}" for index in failed)
            raise StreamError(f"Failed to initialize {names}")

    async def close(self) -> None:
        await self.extrinsic.close()
        await self.registry.stop()
        task, self._refresh_task = self._refresh_task, None
        await cancel_and_wait(task)
        for controller in self.controllers:
            await controller.dispose()
        self.streams.clear()
        logger.info("Wizard closed")

    # ------------------------------------------------------------------
    # Capture

    def switch_camera(self, index: int) -> None:
        self.orchestrator.switch_camera(index)

    async def intrinsic_capture(self, index: int) -> int:
        """Grab the current frame of slot ``index``, submit it and return the new count."""
        self._require_ready(index)
        return await self.orchestrator.capture(index, lambda: self._submit_frame(index))

    async def extrinsic_capture(self) -> CalibrationJob:
        return await self.extrinsic.capture_frame()

    async def assess_quality(self, index: int) -> QualityAssessment:
        """Score the current frame of slot ``index`` with the backend's quality check."""
        frame = await self._grab_frame(index)
        return await self._backend.assess_quality(encode_jpeg_bytes(frame, self.config.capture.jpeg_quality))

    def annotated_frame(self, index: int) -> Optional[np.ndarray]:
        """Last captured frame of slot ``index`` with its detected markers outlined."""
        frame = self.last_frames.get(index)
        if frame is None:
            return None
        result = self.orchestrator.last_detection.get(index)
        corners = result.markers.corners if result is not None and result.markers is not None else []
        return draw_markers(frame, corners)

    # ------------------------------------------------------------------
    # Internals

    async def _submit_frame(self, index: int) -> DetectionResult:
        image = await self._grab_encoded(index)
        return await self._backend.detect_markers(image, index)

    async def _grab_frame(self, index: int) -> np.ndarray:
        self._require_ready(index)
        frame = await self.sinks[index].grab_frame()
        self.last_frames[index] = frame
        return frame

    async def _grab_encoded(self, index: int) -> str:
        frame = await self._grab_frame(index)
        return encode_frame_jpeg(frame, self.config.capture.jpeg_quality)

    def _require_ready(self, index: int) -> None:
        if not 0 <= index < len(self.controllers):
            raise ValueError(f"Unknown camera slot: {index}")
        state = self.controllers[index].state
        if state is not SlotState.READY:
            raise CaptureRejectedError(f"Camera {index + 1} is not ready ({state.value})")

    def _on_stream(self, slot_index: int, device_id: str, stream: LiveStream) -> None:
        self.streams[device_id] = stream
        logger.info("Stream captured for Camera %d (%s)", slot_index + 1, device_id)

    async def _on_devices_changed(self, devices: Sequence[CameraDevice]) -> None:
        for index, controller in enumerate(self.controllers):
            device = devices[index] if index < len(devices) else None
            if device is None:
                if controller.device_id is not None:
                    self.streams.pop(controller.device_id, None)
                    await controller.dispose()
                continue
            if controller.device_id != device.id:
                if controller.device_id is not None:
                    self.streams.pop(controller.device_id, None)
                    await controller.dispose()
                controller.mount(device.id, self.sinks[index])
            elif controller.state is SlotState.ERROR:
                controller.mount(device.id, self.sinks[index])

        if devices:
            self._empty_refresh_done = False
        elif not self._empty_refresh_done:
            self._empty_refresh_done = True
            self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        delay = self.config.registry.empty_refresh_delay_s
        logger.info("No cameras detected, refreshing in %.1fs", delay)
        self._refresh_task = create_logged_task(
            self._delayed_refresh(delay), name="CalibrationWizard.refresh", logger=logger
        )

    async def _delayed_refresh(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.registry.refresh()


__all__ = ["CalibrationWizard", "STEPS", "SinkFactory"]
