"""
Training image collection.

Frames are captured per camera slot into an in-memory list, can be deleted
one by one, and are exported together as JPEG files for object-detector
training. Nothing here talks to the calibration backend.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np

from rig_calibration.core.config import DEFAULT_JPEG_QUALITY
from rig_calibration.core.errors import CaptureRejectedError, RigError, StreamError
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationKind, NotificationSink

from .frames import jpeg_params

logger = get_module_logger("TrainingCapture")

FrameGrabber = Callable[[int], Awaitable[np.ndarray]]


@dataclass(frozen=True, slots=True)
class TrainingCapture:
    camera_index: int
    frame: np.ndarray
    captured_at: float


def export_name(camera_index: int, position: int) -> str:
    """File name of the ``position``-th (0-based) capture of a camera."""
    return f"camera{camera_index + 1}_{position + 1:03d}.jpg"


class TrainingCaptureStore:
    """Per-slot capture lists with one capture running at a time."""

    def __init__(
        self,
        grab: FrameGrabber,
        *,
        camera_indices: Sequence[int] = (0, 1, 2),
        notifier: Optional[NotificationSink] = None,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        self._grab = grab
        self._captures: Dict[int, List[TrainingCapture]] = {index: [] for index in camera_indices}
        self._notifier = notifier or LoggingNotificationSink()
        self._jpeg_quality = jpeg_quality
        self._capturing = False

    @property
    def capturing(self) -> bool:
        return self._capturing

    @property
    def total(self) -> int:
        return sum(len(captures) for captures in self._captures.values())

    def captures(self, index: int) -> List[TrainingCapture]:
        return list(self._slot(index))

    def counts(self) -> Dict[int, int]:
        return {index: len(captures) for index, captures in self._captures.items()}

    async def capture(self, index: int) -> int:
        """
        Grab the current frame of slot ``index`` and keep it; returns the slot's capture count.

        Raises:
            CaptureRejectedError: another capture is running, or the slot cannot capture
            StreamError: the frame could not be read
        """
        captures = self._slot(index)
        if self._capturing:
            raise CaptureRejectedError("A capture is already in progress")

        self._capturing = True
        try:
            frame = await self._grab(index)
        except RigError as exc:
            self._capture_failed(index, exc)
            raise
        except Exception as exc:
            self._capture_failed(index, exc)
            raise StreamError(f"Camera {index + 1}: frame capture failed: {exc}") from exc
        finally:
            self._capturing = False

        captures.append(TrainingCapture(index, frame, time.time()))
        self._notifier.notify(
            NotificationKind.SUCCESS,
            "Image Captured",
            f"Successfully captured image from Camera {index + 1}",
        )
        logger.info("Camera %d: %d training image(s)", index + 1, len(captures))
        return len(captures)

    def delete(self, index: int, position: int) -> TrainingCapture:
        """Remove the ``position``-th (0-based) capture of slot ``index``."""
        captures = self._slot(index)
        if not 0 <= position < len(captures):
            raise CaptureRejectedError(f"Camera {index + 1} has no image {position + 1}")
        removed = captures.pop(position)
        self._notifier.notify(
            NotificationKind.INFO,
            "Image Deleted",
            f"Deleted image {position + 1} from Camera {index + 1}",
        )
        return removed

    def clear(self) -> None:
        for captures in self._captures.values():
            captures.clear()

    async def export(self, directory: Path) -> List[Path]:
        """
        Write every capture to ``directory`` as JPEG and return the written paths.

        Raises:
            CaptureRejectedError: there is nothing to export
            RigError: a file could not be written
        """
        snapshot = [capture for captures in self._captures.values() for capture in captures]
        if not snapshot:
            self._notifier.notify(NotificationKind.ERROR, "Export Failed", "No images to export")
            raise CaptureRejectedError("No images to export")

        try:
            paths = await asyncio.to_thread(self._write_all, Path(directory))
        except (OSError, RigError) as exc:
            self._notifier.notify(NotificationKind.ERROR, "Export Failed", str(exc))
            if isinstance(exc, RigError):
                raise
            raise RigError(f"Export to {directory} failed: {exc}") from exc

        self._notifier.notify(
            NotificationKind.SUCCESS,
            "Export Successful",
            f"Exported {len(paths)} images for training",
        )
        logger.info("Exported %d training image(s) to %s", len(paths), directory)
        return paths

    # ------------------------------------------------------------------
    # Internals

    def _write_all(self, directory: Path) -> List[Path]:
        directory.mkdir(parents=True, exist_ok=True)
        params = jpeg_params(self._jpeg_quality)
        paths: List[Path] = []
        for index, captures in self._captures.items():
            for position, capture in enumerate(list(captures)):
                path = directory / export_name(index, position)
                if not cv2.imwrite(str(path), capture.frame, params):
                    raise RigError(f"Could not write {path}")
                paths.append(path)
        return paths

    def _slot(self, index: int) -> List[TrainingCapture]:
        try:
            return self._captures[index]
        except KeyError:
            raise ValueError(f"Unknown camera slot: {index}") from None

    def _capture_failed(self, index: int, exc: BaseException) -> None:
        logger.error("Camera %d: training capture failed: %s", index + 1, exc)
        self._notifier.notify(NotificationKind.ERROR, "Capture Failed", str(exc) or "Unknown error occurred")


__all__ = ["FrameGrabber", "TrainingCapture", "TrainingCaptureStore", "export_name"]
