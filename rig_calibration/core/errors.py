"""Error taxonomy for camera acquisition and calibration capture."""

from __future__ import annotations

from typing import Optional


class RigError(Exception):
    """Base class for every error raised by the rig calibration package."""


class CameraPermissionError(RigError, PermissionError):
    """Camera access could not be confirmed by the platform."""


class NoDeviceError(RigError):
    """Enumeration succeeded but returned no video input devices."""


class StreamError(RigError):
    """A live stream could not be acquired or never became ready."""

    def __init__(self, message: str, *, device_id: Optional[str] = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.device_id = device_id
        self.attempts = attempts


class DetectionError(RigError):
    """The backend failed to detect markers, or only some cameras succeeded."""

    def __init__(self, message: str, *, camera_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.camera_index = camera_index


class CalibrationError(RigError):
    """Starting, polling or stopping a calibration job failed."""


class CaptureRejectedError(RigError):
    """A capture request was refused before any side effect took place."""


__all__ = [
    "RigError",
    "CameraPermissionError",
    "NoDeviceError",
    "StreamError",
    "DetectionError",
    "CalibrationError",
    "CaptureRejectedError",
]
