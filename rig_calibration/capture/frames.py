"""Frame encoding for backend submission."""

from __future__ import annotations

import base64

import cv2
import numpy as np

from rig_calibration.core.config import DEFAULT_JPEG_QUALITY

JPEG_DATA_URL_PREFIX = "data:image/jpeg;base64,"


def jpeg_params(quality: int) -> list[int]:
    return [int(cv2.IMWRITE_JPEG_QUALITY), max(1, min(100, int(quality)))]


def encode_jpeg_bytes(frame: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Encode a BGR (or grayscale) frame as JPEG."""
    if frame is None or frame.size == 0:
        raise ValueError("Cannot encode an empty frame")
    ok, buffer = cv2.imencode(".jpg", frame, jpeg_params(quality))
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buffer.tobytes()


def encode_frame_jpeg(frame: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> str:
    """Encode a frame as a base64 JPEG data URL."""
    return JPEG_DATA_URL_PREFIX + base64.b64encode(encode_jpeg_bytes(frame, quality)).decode("ascii")


def draw_markers(frame: np.ndarray, corners, color=(0, 255, 0), thickness: int = 2) -> np.ndarray:
    """Return a copy of ``frame`` with each detected marker outlined."""
    annotated = frame.copy()
    for marker in corners or []:
        points = np.asarray(marker, dtype=np.float32).reshape(-1, 2)
        if len(points) < 2:
            continue
        cv2.polylines(annotated, [points.round().astype(np.int32)], True, color, thickness)
    return annotated


__all__ = ["JPEG_DATA_URL_PREFIX", "draw_markers", "encode_frame_jpeg", "encode_jpeg_bytes", "jpeg_params"]
