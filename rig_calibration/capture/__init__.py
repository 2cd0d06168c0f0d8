from .counters import CaptureCounterMap
from .extrinsic import CalibrationJob, ExtrinsicCaptureCoordinator, JobStatus
from .frames import encode_frame_jpeg
from .orchestrator import CaptureOrchestrator
from .training import TrainingCapture, TrainingCaptureStore

__all__ = [
    "CaptureCounterMap",
    "CaptureOrchestrator",
    "CalibrationJob",
    "ExtrinsicCaptureCoordinator",
    "JobStatus",
    "TrainingCapture",
    "TrainingCaptureStore",
    "encode_frame_jpeg",
]
