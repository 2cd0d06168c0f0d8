"""Shared infrastructure: logging, config, errors, retries and task helpers."""

from .errors import (
    CalibrationError,
    CameraPermissionError,
    CaptureRejectedError,
    DetectionError,
    NoDeviceError,
    RigError,
    StreamError,
)
from .logging_utils import get_module_logger
from .notifications import LoggingNotificationSink, NotificationKind, NotificationSink

__all__ = [
    "CalibrationError",
    "CameraPermissionError",
    "CaptureRejectedError",
    "DetectionError",
    "NoDeviceError",
    "RigError",
    "StreamError",
    "get_module_logger",
    "LoggingNotificationSink",
    "NotificationKind",
    "NotificationSink",
]
