"""Client and models for the external calibration backend."""

from .client import CalibrationBackendClient
from .models import BackendReply, CalibrationConfig, DetectionResult, MarkerSet, ProgressReport

__all__ = [
    "CalibrationBackendClient",
    "BackendReply",
    "CalibrationConfig",
    "DetectionResult",
    "MarkerSet",
    "ProgressReport",
]
