"""
HTTP client for the calibration backend.

The backend owns marker detection and the calibration math. This client only
speaks its JSON contract::

    POST /detect_markers        {image, camera_index, config}
    POST /start_calibration     {camera_indices, config}
    GET  /calibration_progress
    POST /stop
    POST /assess-quality        multipart form, field "image" (JPEG)

Detection, start and stop never raise for network or HTTP failures; they
return a reply with ``success=False`` and the backend's message (or the
transport error text). Progress polling raises ``CalibrationError`` so the
poller can treat a failed poll as a terminal error, and quality assessment
raises ``DetectionError``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Sequence, Tuple

import aiohttp

from rig_calibration.core.config import DEFAULT_BACKEND_TIMEOUT_S, DEFAULT_BACKEND_URL, RigConfig
from rig_calibration.core.errors import CalibrationError, DetectionError
from rig_calibration.core.logging_utils import get_module_logger

from .models import BackendReply, CalibrationConfig, DetectionResult, MarkerSet, ProgressReport, QualityAssessment

logger = get_module_logger("CalibrationBackend")

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class CalibrationBackendClient:
    """Async client for the calibration backend; use as an async context manager."""

    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        *,
        config: Optional[CalibrationConfig] = None,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_S,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.config = config or CalibrationConfig()
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: RigConfig, *, session: Optional[aiohttp.ClientSession] = None) -> "CalibrationBackendClient":
        return cls(
            config.backend.base_url,
            config=CalibrationConfig.from_config(config),
            timeout=config.backend.timeout_s,
            session=session,
        )

    async def __aenter__(self) -> "CalibrationBackendClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    # ------------------------------------------------------------------
    # Endpoints

    async def detect_markers(self, image: str, camera_index: int) -> DetectionResult:
        """Submit one base64 JPEG data URL for marker detection."""
        payload = {
            "image": image,
            "camera_index": camera_index,
            "config": self.config.to_payload(),
        }
        logger.debug("Sending detect_markers request for Camera %d", camera_index + 1)
        try:
            ok, data = await self._request("POST", "/detect_markers", payload)
        except TRANSPORT_ERRORS as e:
            message = str(e) or "Failed to detect markers"
            logger.error("Detection error for Camera %d: %s", camera_index + 1, message)
            return DetectionResult(success=False, detected=False, message=message, camera_index=camera_index)

        try:
            markers = MarkerSet.from_payload(data.get("markers"))
        except ValueError as e:
            message = f"Malformed detection response: {e}"
            logger.error("Detection error for Camera %d: %s", camera_index + 1, message)
            return DetectionResult(success=False, detected=False, message=message, camera_index=camera_index)
        count = len(markers) if markers is not None else 0
        backend_message = str(data.get("message") or "")

        if not ok or not data.get("success", True):
            message = backend_message or "Detection failed"
            logger.warning("Detection failed for Camera %d: %s", camera_index + 1, message)
            return DetectionResult(
                success=False,
                detected=False,
                message=message,
                markers=markers,
                camera_index=camera_index,
            )

        detected = count >= self.config.min_markers_detected
        if detected:
            message = f"Detected {count} markers for Camera {camera_index + 1}"
        else:
            message = backend_message or (
                f"Detected {count} markers for Camera {camera_index + 1}, "
                f"need at least {self.config.min_markers_detected}"
            )
        logger.info("ArUco marker detection for Camera %d: %d marker(s)", camera_index + 1, count)
        return DetectionResult(
            success=True,
            detected=detected,
            message=message,
            markers=markers,
            camera_index=camera_index,
        )

    async def start_calibration(self, camera_indices: Sequence[int]) -> BackendReply:
        payload = {
            "camera_indices": list(camera_indices),
            "config": self.config.to_payload(),
        }
        logger.debug("Sending start_calibration request for cameras %s", list(camera_indices))
        try:
            ok, data = await self._request("POST", "/start_calibration", payload)
        except TRANSPORT_ERRORS as e:
            logger.error("Calibration start failed: %s", e)
            return BackendReply(success=False, message=str(e) or "Extrinsic calibration failed to start")

        if not ok or not data.get("success", True):
            message = str(data.get("message") or "Extrinsic calibration failed to start")
            logger.error("Calibration start rejected: %s", message)
            return BackendReply(success=False, message=message)

        width, height = self.config.resolution
        return BackendReply(
            success=True,
            message=(
                f"Extrinsic calibration started with {len(camera_indices)} cameras "
                f"at {width}x{height}"
            ),
        )

    async def calibration_progress(self) -> ProgressReport:
        """Fetch the job progress; raises CalibrationError on any failure."""
        try:
            ok, data = await self._request("GET", "/calibration_progress")
        except TRANSPORT_ERRORS as e:
            raise CalibrationError(f"Error getting progress: {e}") from e
        if not ok:
            raise CalibrationError(str(data.get("message") or "Error getting progress"))
        return ProgressReport.from_payload(data)

    async def stop(self) -> BackendReply:
        logger.debug("Sending stop request")
        try:
            ok, data = await self._request("POST", "/stop")
        except TRANSPORT_ERRORS as e:
            logger.error("Calibration stop failed: %s", e)
            return BackendReply(success=False, message=str(e) or "Failed to stop extrinsic calibration")

        if not ok or not data.get("success", True):
            return BackendReply(
                success=False,
                message=str(data.get("message") or "Failed to stop extrinsic calibration"),
            )
        return BackendReply(success=True, message="Extrinsic calibration stopped successfully")

    async def assess_quality(self, jpeg: bytes) -> QualityAssessment:
        """Upload one JPEG frame for a detection quality score."""
        form = aiohttp.FormData()
        form.add_field("image", jpeg, filename="frame.jpg", content_type="image/jpeg")
        try:
            ok, data = await self._request("POST", "/assess-quality", form=form)
        except TRANSPORT_ERRORS as e:
            raise DetectionError(f"Error assessing detection quality: {e}") from e
        if not ok:
            raise DetectionError(str(data.get("message") or "Error assessing detection quality"))
        try:
            return QualityAssessment.from_payload(data)
        except ValueError as e:
            raise DetectionError(f"Malformed quality response: {e}") from e

    # ------------------------------------------------------------------
    # Internals

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        form: Optional[aiohttp.FormData] = None,
    ) -> Tuple[bool, Dict[str, Any]]:
        session = self._ensure_session()
        url = f"{self.base_url}{path}"
        async with session.request(method, url, json=payload, data=form, timeout=self._timeout) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError:
                data = None
            if not isinstance(data, dict):
                data = {}
            return response.status < 400, data


__all__ = ["CalibrationBackendClient"]
