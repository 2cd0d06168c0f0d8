"""
Camera platform abstraction.

Everything above this layer talks to cameras through four capabilities:
device enumeration, stream acquisition with constraints, device-change
notifications, and a sink that a live stream is attached to for display
and frame grabbing. ``OpenCVCameraPlatform`` implements them for V4L2/USB
cameras; tests provide in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Protocol, runtime_checkable

VIDEO_INPUT = "videoinput"
AUDIO_INPUT = "audioinput"

TRACK_LIVE = "live"
TRACK_ENDED = "ended"

DeviceChangeCallback = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class MediaDeviceInfo:
    """A raw device entry as reported by the platform."""
    device_id: str
    kind: str
    label: str = ""


@dataclass(frozen=True, slots=True)
class StreamConstraints:
    """Requested stream profile.

    ``device_id`` is an exact match when set; width/height/fps are ideal values
    the device may not honor. Audio is never requested.
    """
    device_id: Optional[str]
    width: int
    height: int
    fps: int
    audio: bool = False

    @classmethod
    def video(cls, device_id: Optional[str], resolution: tuple[int, int], fps: int) -> "StreamConstraints":
        return cls(device_id=device_id, width=resolution[0], height=resolution[1], fps=fps)


@runtime_checkable
class MediaTrack(Protocol):
    kind: str

    @property
    def ready_state(self) -> str:
        ...

    def stop(self) -> None:
        ...


class LiveStream:
    """A set of media tracks acquired together for one device."""

    def __init__(self, device_id: str, tracks: Iterable[MediaTrack]) -> None:
        self.device_id = device_id
        self._tracks: List[MediaTrack] = list(tracks)

    def get_tracks(self) -> List[MediaTrack]:
        return list(self._tracks)

    def get_video_tracks(self) -> List[MediaTrack]:
        return [track for track in self._tracks if track.kind == "video"]

    @property
    def active(self) -> bool:
        return any(track.ready_state == TRACK_LIVE for track in self._tracks)

    def stop(self) -> None:
        """Stop every track; safe to call repeatedly."""
        for track in self._tracks:
            if track.ready_state != TRACK_ENDED:
                track.stop()

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"LiveStream(device_id={self.device_id!r}, tracks={len(self._tracks)}, active={self.active})"


@runtime_checkable
class VideoSink(Protocol):
    """Consumer a live stream is attached to (preview surface, frame grabber)."""

    @property
    def stream(self) -> Optional[LiveStream]:
        ...

    def attach(self, stream: LiveStream) -> None:
        ...

    def detach(self) -> None:
        ...

    async def wait_ready(self, timeout: float) -> None:
        """Return once the attached stream delivered its metadata (first frame)."""
        ...

    async def grab_frame(self) -> Any:
        ...


@runtime_checkable
class CameraPlatform(Protocol):
    async def get_user_media(self, constraints: StreamConstraints) -> LiveStream:
        ...

    async def enumerate_devices(self) -> List[MediaDeviceInfo]:
        ...

    def add_device_change_listener(self, callback: DeviceChangeCallback) -> None:
        ...

    def remove_device_change_listener(self, callback: DeviceChangeCallback) -> None:
        ...


__all__ = [
    "VIDEO_INPUT",
    "AUDIO_INPUT",
    "TRACK_LIVE",
    "TRACK_ENDED",
    "DeviceChangeCallback",
    "MediaDeviceInfo",
    "StreamConstraints",
    "MediaTrack",
    "LiveStream",
    "VideoSink",
    "CameraPlatform",
]
