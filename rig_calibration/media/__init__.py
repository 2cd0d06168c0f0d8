"""Camera platform abstraction and hot-plug monitoring (OpenCV implementation in ``media.opencv``)."""

from .base import (
    VIDEO_INPUT,
    CameraPlatform,
    DeviceChangeCallback,
    LiveStream,
    MediaDeviceInfo,
    MediaTrack,
    StreamConstraints,
    VideoSink,
)
from .hotplug import DeviceChangeMonitor

__all__ = [
    "VIDEO_INPUT",
    "CameraPlatform",
    "DeviceChangeCallback",
    "LiveStream",
    "MediaDeviceInfo",
    "MediaTrack",
    "StreamConstraints",
    "VideoSink",
    "DeviceChangeMonitor",
]
