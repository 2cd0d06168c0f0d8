"""Request and response models for the calibration backend HTTP contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rig_calibration.core.config import (
    DEFAULT_MARKER_SIZE_M,
    DEFAULT_MAX_REPROJ_ERROR,
    DEFAULT_MIN_MARKERS_DETECTED,
    DEFAULT_NUM_CAMERAS,
    DEFAULT_RESOLUTION,
    RigConfig,
)


@dataclass(frozen=True, slots=True)
class CalibrationConfig:
    """Parameters sent with every detection and calibration start request."""
    num_cameras: int = DEFAULT_NUM_CAMERAS
    resolution: Tuple[int, int] = DEFAULT_RESOLUTION
    marker_size: float = DEFAULT_MARKER_SIZE_M
    min_markers_detected: int = DEFAULT_MIN_MARKERS_DETECTED
    max_reproj_error: float = DEFAULT_MAX_REPROJ_ERROR

    @classmethod
    def from_config(cls, config: RigConfig) -> "CalibrationConfig":
        return cls(
            num_cameras=config.capture.num_cameras,
            resolution=tuple(config.stream.resolution),
            marker_size=config.backend.marker_size_m,
            min_markers_detected=config.backend.min_markers_detected,
            max_reproj_error=config.backend.max_reproj_error,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "numCameras": self.num_cameras,
            "resolution": [self.resolution[0], self.resolution[1]],
            "markerSize": self.marker_size,
            "minMarkersDetected": self.min_markers_detected,
            "maxReprojError": self.max_reproj_error,
        }


@dataclass(slots=True)
class MarkerSet:
    corners: List[List[List[float]]] = field(default_factory=list)
    ids: List[int] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Any) -> Optional["MarkerSet"]:
        """
        Parse the ``markers`` object of a detection response.

        Raises:
            ValueError: the object is not shaped like ``{"corners": [...], "ids": [...]}``
        """
        if not data:
            return None
        if not isinstance(data, Mapping):
            raise ValueError(f"markers must be an object, got {type(data).__name__}")
        corners = data.get("corners") or []
        raw_ids = data.get("ids") or []
        if not isinstance(corners, list) or not isinstance(raw_ids, list):
            raise ValueError("markers.corners and markers.ids must be lists")
        try:
            ids = [int(marker_id) for marker_id in raw_ids]
        except (TypeError, ValueError):
            raise ValueError(f"markers.ids must be integers: {raw_ids!r}") from None
        return cls(corners=list(corners), ids=ids)

    def __len__(self) -> int:
        return len(self.ids)


@dataclass(slots=True)
class DetectionResult:
    success: bool
    detected: bool
    message: str = ""
    markers: Optional[MarkerSet] = None
    camera_index: Optional[int] = None

    @property
    def ok(self) -> bool:
        """True only when the backend succeeded and enough markers were found."""
        return self.success and self.detected

    @property
    def marker_count(self) -> int:
        return len(self.markers) if self.markers is not None else 0


@dataclass(slots=True)
class BackendReply:
    success: bool
    message: str = ""


@dataclass(slots=True)
class ProgressReport:
    is_running: bool
    progress: int
    message: str = ""

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "ProgressReport":
        raw_progress = data.get("progress", 0)
        try:
            progress = int(raw_progress)
        except (TypeError, ValueError):
            progress = 0
        return cls(
            is_running=bool(data.get("is_running", False)),
            progress=max(0, min(100, progress)),
            message=str(data.get("message") or ""),
        )


@dataclass(slots=True)
class QualityAssessment:
    """Detection quality score of one frame plus the backend's recent score history."""
    score: float
    recent_scores: List[float] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "QualityAssessment":
        """
        Raises:
            ValueError: ``score`` is missing or a score is not a number
        """
        if "score" not in data:
            raise ValueError("quality response has no score")
        raw_recent = data.get("recentScores") or []
        if not isinstance(raw_recent, list):
            raise ValueError("recentScores must be a list")
        try:
            return cls(score=float(data["score"]), recent_scores=[float(value) for value in raw_recent])
        except (TypeError, ValueError):
            raise ValueError(f"quality scores must be numbers: {dict(data)!r}") from None


__all__ = [
    "CalibrationConfig",
    "MarkerSet",
    "DetectionResult",
    "BackendReply",
    "ProgressReport",
    "QualityAssessment",
]
