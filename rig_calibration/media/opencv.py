"""
OpenCV implementation of the camera platform.

Discovers cameras via /dev/video* and sysfs on Linux (probing indices with
OpenCV elsewhere), opens them with ``cv2.VideoCapture`` using the requested
profile as a best-effort hint, and exposes them as ``LiveStream`` objects.
``FrameSink`` is the matching sink: it considers a stream ready once the
first frame has been read and serves frames for capture.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.media.base import (
    TRACK_ENDED,
    TRACK_LIVE,
    VIDEO_INPUT,
    DeviceChangeCallback,
    LiveStream,
    MediaDeviceInfo,
    StreamConstraints,
)
from rig_calibration.media.hotplug import DeviceChangeMonitor, list_video_nodes

logger = get_module_logger("OpenCVPlatform")

SYSFS_VIDEO_ROOT = Path("/sys/class/video4linux")
MAX_PROBE_INDEX = 8


def _import_cv2():
    import cv2
    return cv2


class OpenCVVideoTrack:
    """Video track backed by a ``cv2.VideoCapture``."""

    kind = "video"

    def __init__(self, capture, label: str = "") -> None:
        self._capture = capture
        self._lock = threading.Lock()
        self._state = TRACK_LIVE
        self._reading = False
        self.label = label

    @property
    def ready_state(self) -> str:
        return self._state

    def settings(self) -> Tuple[int, int, float]:
        """Actual (width, height, fps) reported by the device."""
        cv2 = _import_cv2()
        with self._lock:
            if self._state != TRACK_LIVE:
                return (0, 0, 0.0)
            return (
                int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                float(self._capture.get(cv2.CAP_PROP_FPS)),
            )

    def read(self) -> Optional[np.ndarray]:
        """
        Blocking read of one BGR frame; None if the track ended or the read failed.

        The lock is not held during ``capture.read()``. A ``stop()`` issued
        meanwhile only marks the track ended, and the capture is released here
        once the read returns.
        """
        with self._lock:
            if self._state != TRACK_LIVE:
                return None
            self._reading = True
        try:
            ok, frame = self._capture.read()
        finally:
            with self._lock:
                self._reading = False
                ended = self._state == TRACK_ENDED
            if ended:
                self._release()
        if ended or not ok:
            return None
        return frame

    def stop(self) -> None:
        """Mark the track ended without waiting for an in-flight read."""
        with self._lock:
            if self._state == TRACK_ENDED:
                return
            self._state = TRACK_ENDED
            reading = self._reading
        if not reading:
            self._release()
        logger.debug("Track stopped: %s", self.label)

    def _release(self) -> None:
        self._capture.release()
        logger.debug("Capture released: %s", self.label)


class OpenCVCameraPlatform:
    """Camera platform for USB/V4L2 cameras via OpenCV."""

    def __init__(self, monitor: Optional[DeviceChangeMonitor] = None) -> None:
        self._monitor = monitor or DeviceChangeMonitor()

    @property
    def monitor(self) -> DeviceChangeMonitor:
        return self._monitor

    async def start(self) -> None:
        await self._monitor.start()

    async def stop(self) -> None:
        await self._monitor.stop()

    def add_device_change_listener(self, callback: DeviceChangeCallback) -> None:
        self._monitor.subscribe(callback)

    def remove_device_change_listener(self, callback: DeviceChangeCallback) -> None:
        self._monitor.unsubscribe(callback)

    async def enumerate_devices(self) -> List[MediaDeviceInfo]:
        return await asyncio.to_thread(self._enumerate_sync)

    async def get_user_media(self, constraints: StreamConstraints) -> LiveStream:
        if constraints.audio:
            raise ValueError("Audio capture is not supported")
        return await asyncio.to_thread(self._open_sync, constraints)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)

    def _enumerate_sync(self) -> List[MediaDeviceInfo]:
        if sys.platform == "linux":
            devices = self._enumerate_linux()
        else:
            devices = self._enumerate_by_probe()
        logger.debug("Enumerated %d video input(s)", len(devices))
        return devices

    def _enumerate_linux(self) -> List[MediaDeviceInfo]:
        devices: List[MediaDeviceInfo] = []
        for node in list_video_nodes():
            name = Path(node).name
            sysfs = SYSFS_VIDEO_ROOT / name
            # Each UVC camera exposes a capture node (index 0) plus metadata nodes.
            index_file = sysfs / "index"
            if index_file.exists() and index_file.read_text().strip() != "0":
                continue
            label = ""
            name_file = sysfs / "name"
            if name_file.exists():
                label = name_file.read_text().strip()
            devices.append(MediaDeviceInfo(device_id=node, kind=VIDEO_INPUT, label=label))
        return devices

    def _enumerate_by_probe(self) -> List[MediaDeviceInfo]:
        cv2 = _import_cv2()
        devices: List[MediaDeviceInfo] = []
        for index in range(MAX_PROBE_INDEX):
            capture = cv2.VideoCapture(index)
            try:
                if capture.isOpened():
                    devices.append(MediaDeviceInfo(device_id=str(index), kind=VIDEO_INPUT, label=f"Camera {index}"))
            finally:
                capture.release()
        return devices

    def _open_sync(self, constraints: StreamConstraints) -> LiveStream:
        cv2 = _import_cv2()
        device_id = constraints.device_id
        if device_id is None:
            available = self._enumerate_sync()
            if not available:
                raise RuntimeError("No video input available")
            device_id = available[0].device_id

        source = int(device_id) if device_id.isdigit() else device_id
        backend = getattr(cv2, "CAP_V4L2", None) if sys.platform == "linux" else None
        if backend is not None:
            capture = cv2.VideoCapture(source, backend)
        else:
            capture = cv2.VideoCapture(source)

        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Failed to open camera: {device_id}")

        capture.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*"MJPG"))
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        capture.set(cv2.CAP_PROP_FPS, constraints.fps)

        track = OpenCVVideoTrack(capture, label=device_id)
        width, height, fps = track.settings()
        if (width, height) != (constraints.width, constraints.height):
            logger.warning(
                "Camera %s: requested %dx%d but device delivers %dx%d",
                device_id, constraints.width, constraints.height, width, height,
            )
        logger.info("Camera opened: %s (%dx%d @ %.1f fps)", device_id, width, height, fps)
        return LiveStream(device_id, [track])


class FrameSink:
    """Sink that reads frames from an attached OpenCV stream."""

    POLL_DELAY = 0.05

    def __init__(self, name: str = "sink") -> None:
        self.name = name
        self._stream: Optional[LiveStream] = None
        self._last_frame: Optional[np.ndarray] = None

    @property
    def stream(self) -> Optional[LiveStream]:
        return self._stream

    @property
    def frame_size(self) -> Optional[Tuple[int, int]]:
        if self._last_frame is None:
            return None
        height, width = self._last_frame.shape[:2]
        return (width, height)

    def attach(self, stream: LiveStream) -> None:
        self._stream = stream
        self._last_frame = None

    def detach(self) -> None:
        self._stream = None
        self._last_frame = None

    async def wait_ready(self, timeout: float) -> None:
        await asyncio.wait_for(self._first_frame(), timeout=timeout)

    async def grab_frame(self) -> np.ndarray:
        track = self._track()
        frame = await asyncio.to_thread(track.read)
        if frame is None:
            raise RuntimeError(f"{self.name}: failed to read a frame")
        self._last_frame = frame
        return frame

    async def _first_frame(self) -> None:
        track = self._track()
        while True:
            frame = await asyncio.to_thread(track.read)
            if frame is not None:
                self._last_frame = frame
                return
            if track.ready_state == TRACK_ENDED:
                raise RuntimeError(f"{self.name}: stream ended before the first frame")
            await asyncio.sleep(self.POLL_DELAY)

    def _track(self) -> OpenCVVideoTrack:
        if self._stream is None:
            raise RuntimeError(f"{self.name}: no stream attached")
        tracks = self._stream.get_video_tracks()
        if not tracks or not isinstance(tracks[0], OpenCVVideoTrack):
            raise RuntimeError(f"{self.name}: attached stream has no OpenCV video track")
        return tracks[0]


__all__ = ["OpenCVCameraPlatform", "OpenCVVideoTrack", "FrameSink"]
