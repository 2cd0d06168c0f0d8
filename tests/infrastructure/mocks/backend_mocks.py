"""Fake calibration backends.

``FakeBackendClient`` replaces ``CalibrationBackendClient`` in-process with
scripted replies. ``create_backend_app`` builds an aiohttp application that
implements the HTTP contract, for client tests run against ``TestServer``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from aiohttp import web

from rig_calibration.backend.models import BackendReply, DetectionResult, MarkerSet, ProgressReport, QualityAssessment
from rig_calibration.core.errors import CalibrationError


def square_markers(count: int) -> MarkerSet:
    corners = [
        [[10.0 * i, 10.0], [10.0 * i + 8, 10.0], [10.0 * i + 8, 18.0], [10.0 * i, 18.0]]
        for i in range(count)
    ]
    return MarkerSet(corners=corners, ids=list(range(count)))


def detection_ok(camera_index: int, markers: int = 4) -> DetectionResult:
    return DetectionResult(
        success=True,
        detected=True,
        message=f"Detected {markers} markers for Camera {camera_index + 1}",
        markers=square_markers(markers),
        camera_index=camera_index,
    )


def detection_failed(camera_index: int, message: str = "Detection failed") -> DetectionResult:
    return DetectionResult(success=False, detected=False, message=message, camera_index=camera_index)


def detection_too_few(camera_index: int, markers: int = 2) -> DetectionResult:
    return DetectionResult(
        success=True,
        detected=False,
        message=f"Detected {markers} markers for Camera {camera_index + 1}",
        markers=square_markers(markers),
        camera_index=camera_index,
    )


ProgressStep = Union[ProgressReport, Exception]


class FakeBackendClient:
    """Scripted stand-in for CalibrationBackendClient."""

    def __init__(
        self,
        detections: Optional[Dict[int, Union[DetectionResult, Sequence[DetectionResult]]]] = None,
        *,
        progress: Sequence[ProgressStep] = (),
        start_reply: Optional[BackendReply] = None,
        stop_reply: Optional[BackendReply] = None,
    ):
        self._detections: Dict[int, List[DetectionResult]] = {}
        for index, value in (detections or {}).items():
            self._detections[index] = list(value) if isinstance(value, (list, tuple)) else [value]
        self._progress: List[ProgressStep] = list(progress)
        self.start_reply = start_reply or BackendReply(True, "Extrinsic calibration started with 3 cameras at 1280x720")
        self.stop_reply = stop_reply or BackendReply(True, "Extrinsic calibration stopped successfully")
        self.detect_calls: List[Tuple[int, str]] = []
        self.start_calls: List[List[int]] = []
        self.progress_calls = 0
        self.stop_calls = 0
        self.quality = QualityAssessment(score=0.8, recent_scores=[0.8])
        self.assess_calls: List[bytes] = []
        self.detect_gate: Optional[asyncio.Event] = None
        self.start_gate: Optional[asyncio.Event] = None
        self.concurrent_detects = 0
        self.max_concurrent_detects = 0

    async def detect_markers(self, image: str, camera_index: int) -> DetectionResult:
        self.detect_calls.append((camera_index, image))
        self.concurrent_detects += 1
        self.max_concurrent_detects = max(self.max_concurrent_detects, self.concurrent_detects)
        try:
            if self.detect_gate is not None:
                await self.detect_gate.wait()
            await asyncio.sleep(0)
        finally:
            self.concurrent_detects -= 1
        script = self._detections.get(camera_index)
        if not script:
            return detection_ok(camera_index)
        return script.pop(0) if len(script) > 1 else script[0]

    async def start_calibration(self, camera_indices: Sequence[int]) -> BackendReply:
        self.start_calls.append(list(camera_indices))
        if self.start_gate is not None:
            await self.start_gate.wait()
        return self.start_reply

    async def calibration_progress(self) -> ProgressReport:
        self.progress_calls += 1
        if not self._progress:
            return ProgressReport(is_running=False, progress=100, message="")
        step = self._progress.pop(0) if len(self._progress) > 1 else self._progress[0]
        if isinstance(step, Exception):
            raise step
        return step

    async def stop(self) -> BackendReply:
        self.stop_calls += 1
        return self.stop_reply

    async def assess_quality(self, jpeg: bytes) -> QualityAssessment:
        self.assess_calls.append(jpeg)
        return self.quality


def running(progress: int, message: str = "") -> ProgressReport:
    return ProgressReport(is_running=True, progress=progress, message=message)


def progress_error(message: str = "Error getting progress") -> CalibrationError:
    return CalibrationError(message)


# ---------------------------------------------------------------------------
# HTTP fake


@dataclass
class BackendState:
    """Mutable replies and request log for the fake HTTP backend."""
    detect_status: int = 200
    detect_body: Any = field(default_factory=lambda: {
        "success": True,
        "detected": True,
        "markers": {"corners": [[[0, 0], [1, 0], [1, 1], [0, 1]]] * 5, "ids": [0, 1, 2, 3, 4]},
    })
    start_status: int = 200
    start_body: Any = field(default_factory=lambda: {"success": True, "message": "started"})
    progress_status: int = 200
    progress_body: Any = field(default_factory=lambda: {"is_running": True, "progress": 40, "message": "working"})
    stop_status: int = 200
    stop_body: Any = field(default_factory=lambda: {"success": True, "message": "stopped"})
    assess_status: int = 200
    assess_body: Any = field(default_factory=lambda: {"score": 0.75, "recentScores": [0.5, 0.75]})
    requests: List[Tuple[str, Any]] = field(default_factory=list)


def create_backend_app(state: BackendState) -> web.Application:
    async def detect_markers(request: web.Request) -> web.Response:
        state.requests.append(("detect_markers", await request.json()))
        return web.json_response(state.detect_body, status=state.detect_status)

    async def start_calibration(request: web.Request) -> web.Response:
        state.requests.append(("start_calibration", await request.json()))
        return web.json_response(state.start_body, status=state.start_status)

    async def calibration_progress(request: web.Request) -> web.Response:
        state.requests.append(("calibration_progress", None))
        return web.json_response(state.progress_body, status=state.progress_status)

    async def stop(request: web.Request) -> web.Response:
        state.requests.append(("stop", None))
        return web.json_response(state.stop_body, status=state.stop_status)

    async def assess_quality(request: web.Request) -> web.Response:
        form = await request.post()
        image = form.get("image")
        state.requests.append(("assess-quality", {
            "filename": getattr(image, "filename", None),
            "content_type": getattr(image, "content_type", None),
            "size": len(image.file.read()) if image is not None else 0,
        }))
        return web.json_response(state.assess_body, status=state.assess_status)

    app = web.Application()
    app.router.add_post("/detect_markers", detect_markers)
    app.router.add_post("/start_calibration", start_calibration)
    app.router.add_get("/calibration_progress", calibration_progress)
    app.router.add_post("/stop", stop)
    app.router.add_post("/assess-quality", assess_quality)
    return app
