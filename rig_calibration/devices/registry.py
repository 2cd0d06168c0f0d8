"""
Camera device registry.

Confirms camera access with a short-lived probe stream, enumerates the video
inputs and keeps the current list. The list is replaced wholesale on every
enumeration and re-enumerated whenever the platform reports a topology change.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from rig_calibration.core.config import RegistrySettings, StreamSettings
from rig_calibration.core.errors import CameraPermissionError, NoDeviceError, RigError
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationKind, NotificationSink
from rig_calibration.core.retry_policy import RetryPolicy
from rig_calibration.media.base import VIDEO_INPUT, CameraPlatform, StreamConstraints

logger = get_module_logger("DeviceRegistry")


@dataclass(frozen=True, slots=True)
class CameraDevice:
    """An enumerated video input. Identity is ``id``."""
    id: str
    label: str


DevicesChangedCallback = Callable[[Tuple[CameraDevice, ...]], Awaitable[None]]


class DeviceRegistry:
    """
    Enumerates cameras and tracks hot-plug changes.

    ``enumerate()`` raises; ``refresh()`` is the fail-safe entry point used by
    hot-plug handling and manual refreshes: on failure the list becomes empty,
    one error notification is emitted and nothing propagates.
    """

    def __init__(
        self,
        platform: CameraPlatform,
        *,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[RegistrySettings] = None,
        stream_settings: Optional[StreamSettings] = None,
    ) -> None:
        self._platform = platform
        self._notifier = notifier or LoggingNotificationSink()
        self._settings = settings or RegistrySettings()
        self._stream_settings = stream_settings or StreamSettings()
        self._devices: Tuple[CameraDevice, ...] = ()
        self._listeners: List[DevicesChangedCallback] = []
        self._lock = asyncio.Lock()
        self._started = False
        self.last_error: Optional[RigError] = None
        self.probe_attempts = 0

    @property
    def devices(self) -> Tuple[CameraDevice, ...]:
        return self._devices

    def add_listener(self, callback: DevicesChangedCallback) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: DevicesChangedCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def start(self) -> Tuple[CameraDevice, ...]:
        """Subscribe to device changes and run the initial enumeration."""
        if not self._started:
            self._started = True
            self._platform.add_device_change_listener(self._on_device_change)
        return await self.refresh()

    async def stop(self) -> None:
        if self._started:
            self._started = False
            self._platform.remove_device_change_listener(self._on_device_change)

    async def enumerate(self) -> List[CameraDevice]:
        """
        Probe camera access, then list the video inputs.

        Raises:
            CameraPermissionError: the probe failed on every attempt
            NoDeviceError: no video input was reported
        """
        await self._probe_permission()

        infos = await self._platform.enumerate_devices()
        videos = [info for info in infos if info.kind == VIDEO_INPUT]
        devices = [
            CameraDevice(id=info.device_id, label=info.label or f"Camera {index + 1}")
            for index, info in enumerate(videos)
        ]
        for index, device in enumerate(devices):
            logger.debug("Camera %d: %s (%s)", index, device.label, device.id)
        if not devices:
            raise NoDeviceError("No video input devices detected")
        return devices

    async def refresh(self) -> Tuple[CameraDevice, ...]:
        """Re-enumerate and replace the device list; never raises."""
        async with self._lock:
            try:
                devices = await self._enumerate_wrapped()
            except RigError as exc:
                self.last_error = exc
                self._devices = ()
                logger.error("Camera enumeration failed: %s", exc)
                self._notifier.notify(
                    NotificationKind.ERROR,
                    "Camera Error",
                    f"Could not access cameras: {exc}. Check camera permissions, "
                    "that no other application is using them, and that hardware is connected.",
                )
            else:
                self.last_error = None
                self._devices = tuple(devices)
                logger.info("Cameras detected: %d", len(devices))
                self._notifier.notify(
                    NotificationKind.SUCCESS,
                    "Cameras Detected",
                    f"Found {len(devices)} cameras",
                )
            snapshot = self._devices

        await self._notify_listeners(snapshot)
        return snapshot

    async def _enumerate_wrapped(self) -> List[CameraDevice]:
        try:
            return await self.enumerate()
        except RigError:
            raise
        except Exception as exc:
            raise RigError(f"Device enumeration failed: {exc}") from exc

    async def _probe_permission(self) -> None:
        constraints = StreamConstraints.video(None, self._stream_settings.resolution, self._stream_settings.fps)
        policy = RetryPolicy(
            max_attempts=self._settings.probe_attempts,
            delay=self._settings.probe_delay_s,
        )

        async def probe() -> None:
            self.probe_attempts += 1
            stream = await self._platform.get_user_media(constraints)
            stream.stop()

        def on_retry(attempt: int, error: Optional[str]) -> None:
            logger.warning(
                "Permission attempt %d/%d failed: %s",
                attempt - 1, policy.max_attempts, error,
            )

        self.probe_attempts = 0
        result = await policy.execute(probe, on_retry=on_retry)
        if not result.success:
            raise CameraPermissionError(
                f"Camera access failed after {result.attempt_count} attempts: {result.final_error}"
            ) from result.last_exception

    async def _on_device_change(self) -> None:
        logger.info("Device change detected, refreshing camera list")
        await self.refresh()

    async def _notify_listeners(self, devices: Tuple[CameraDevice, ...]) -> None:
        for callback in list(self._listeners):
            try:
                await callback(devices)
            except Exception as e:
                logger.error("Error in device list listener: %s", e)


__all__ = ["CameraDevice", "DeviceRegistry", "DevicesChangedCallback"]
