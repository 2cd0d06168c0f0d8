"""In-memory camera platform, streams and sinks for testing.

Provides fakes for the camera platform layer so that the registry, stream
controllers and wizard can be exercised without any video hardware.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np

from rig_calibration.core.notifications import NotificationKind
from rig_calibration.media.base import (
    TRACK_ENDED,
    TRACK_LIVE,
    VIDEO_INPUT,
    DeviceChangeCallback,
    LiveStream,
    MediaDeviceInfo,
    StreamConstraints,
)


class FakeTrack:
    """Media track that records how often it was stopped."""

    kind = "video"

    def __init__(self, device_id: Optional[str]):
        self.device_id = device_id
        self._state = TRACK_LIVE
        self.stop_calls = 0

    @property
    def ready_state(self) -> str:
        return self._state

    def stop(self) -> None:
        self.stop_calls += 1
        self._state = TRACK_ENDED


class FakePlatform:
    """CameraPlatform backed by a scripted device list.

    Args:
        device_ids: IDs reported by ``enumerate_devices`` as video inputs
        failures: Number of times ``get_user_media`` fails per device ID
        probe_failures: Number of times a probe (no device ID) fails
    """

    def __init__(
        self,
        device_ids: Iterable[str] = (),
        *,
        failures: Optional[Dict[str, int]] = None,
        probe_failures: int = 0,
    ):
        self.devices: List[MediaDeviceInfo] = [
            MediaDeviceInfo(device_id=device_id, kind=VIDEO_INPUT, label=f"Fake {device_id}")
            for device_id in device_ids
        ]
        self.failures: Dict[str, int] = dict(failures or {})
        self.always_fail: set[str] = set()
        self.probe_failures = probe_failures
        self.requests: List[StreamConstraints] = []
        self.streams: List[LiveStream] = []
        self.listeners: List[DeviceChangeCallback] = []
        self.gate: Optional[asyncio.Event] = None
        self.enumerate_error: Optional[Exception] = None
        self.in_progress = 0
        self.max_in_progress = 0

    # CameraPlatform ---------------------------------------------------

    async def get_user_media(self, constraints: StreamConstraints) -> LiveStream:
        self.requests.append(constraints)
        self.in_progress += 1
        self.max_in_progress = max(self.max_in_progress, self.in_progress)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)

            device_id = constraints.device_id
            if device_id is None:
                if self.probe_failures > 0:
                    self.probe_failures -= 1
                    raise PermissionError("Permission denied")
            elif device_id in self.always_fail:
                raise OSError(f"Could not start video source {device_id}")
            elif self.failures.get(device_id, 0) > 0:
                self.failures[device_id] -= 1
                raise OSError(f"Could not start video source {device_id}")

            stream = LiveStream(device_id or "probe", [FakeTrack(device_id)])
            self.streams.append(stream)
            return stream
        finally:
            self.in_progress -= 1

    async def enumerate_devices(self) -> List[MediaDeviceInfo]:
        if self.enumerate_error is not None:
            raise self.enumerate_error
        return list(self.devices)

    def add_device_change_listener(self, callback: DeviceChangeCallback) -> None:
        self.listeners.append(callback)

    def remove_device_change_listener(self, callback: DeviceChangeCallback) -> None:
        if callback in self.listeners:
            self.listeners.remove(callback)

    # Test helpers -----------------------------------------------------

    def set_devices(self, device_ids: Iterable[str]) -> None:
        self.devices = [
            MediaDeviceInfo(device_id=device_id, kind=VIDEO_INPUT, label=f"Fake {device_id}")
            for device_id in device_ids
        ]

    async def emit_device_change(self) -> None:
        for callback in list(self.listeners):
            await callback()

    def stream_requests(self, device_id: Optional[str]) -> List[StreamConstraints]:
        return [request for request in self.requests if request.device_id == device_id]

    def live_streams(self, device_id: Optional[str] = None) -> List[LiveStream]:
        return [
            stream for stream in self.streams
            if stream.active and (device_id is None or stream.device_id == device_id)
        ]


class FakeSink:
    """VideoSink that becomes ready immediately unless told otherwise."""

    def __init__(self, *, ready_failures: int = 0, frame: Optional[np.ndarray] = None):
        self._stream: Optional[LiveStream] = None
        self.ready_failures = ready_failures
        self.frame = frame if frame is not None else np.full((48, 64, 3), 127, dtype=np.uint8)
        self.attached: List[LiveStream] = []
        self.detach_count = 0
        self.grab_count = 0

    @property
    def stream(self) -> Optional[LiveStream]:
        return self._stream

    def attach(self, stream: LiveStream) -> None:
        self._stream = stream
        self.attached.append(stream)

    def detach(self) -> None:
        self._stream = None
        self.detach_count += 1

    async def wait_ready(self, timeout: float) -> None:
        if self._stream is None:
            raise RuntimeError("no stream attached")
        await asyncio.sleep(0)
        if self.ready_failures > 0:
            self.ready_failures -= 1
            raise asyncio.TimeoutError()

    async def grab_frame(self) -> np.ndarray:
        if self._stream is None:
            raise RuntimeError("no stream attached")
        self.grab_count += 1
        return self.frame.copy()


@dataclass
class Notification:
    kind: NotificationKind
    title: str
    detail: str


class RecordingNotificationSink:
    """NotificationSink that keeps every notification for assertions."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def notify(self, kind: NotificationKind, title: str, detail: str) -> None:
        self.notifications.append(Notification(kind, title, detail))

    def of_kind(self, kind: NotificationKind) -> List[Notification]:
        return [n for n in self.notifications if n.kind is kind]

    @property
    def errors(self) -> List[Notification]:
        return self.of_kind(NotificationKind.ERROR)

    @property
    def successes(self) -> List[Notification]:
        return self.of_kind(NotificationKind.SUCCESS)

    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]

    def clear(self) -> None:
        self.notifications.clear()


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and short tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
