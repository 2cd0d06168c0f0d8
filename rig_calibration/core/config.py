"""Typed configuration for the rig calibration tools.

Configuration lives in plain ``key = value`` text files (``#`` starts a
comment, values may be quoted). Keys are dotted (``stream.max_retries``) and
map onto the settings dataclasses below. Unparseable values fall back to the
defaults rather than failing startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import aiofiles

from rig_calibration.core.logging_utils import LoggerLike, ensure_structured_logger

Resolution = Tuple[int, int]

BACKEND_URL_ENV = "CALIBRATION_API_URL"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config.txt"

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
DEFAULT_BACKEND_TIMEOUT_S = 10.0
DEFAULT_MARKER_SIZE_M = 0.05
DEFAULT_MIN_MARKERS_DETECTED = 4
DEFAULT_MAX_REPROJ_ERROR = 1.0
DEFAULT_RESOLUTION: Resolution = (1280, 720)
DEFAULT_FPS = 30
DEFAULT_WARMUP_S = 2.5
DEFAULT_STREAM_MAX_RETRIES = 7
DEFAULT_STREAM_RETRY_DELAY_S = 3.0
DEFAULT_READY_TIMEOUT_S = 10.0
DEFAULT_PROBE_ATTEMPTS = 5
DEFAULT_PROBE_DELAY_S = 3.0
DEFAULT_HOTPLUG_INTERVAL_S = 1.0
DEFAULT_EMPTY_REFRESH_DELAY_S = 1.0
DEFAULT_CAPTURE_TARGET = 15
DEFAULT_NUM_CAMERAS = 3
DEFAULT_JPEG_QUALITY = 95
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = Path("./logs/rig_calibration.log")


@dataclass(slots=True)
class BackendSettings:
    base_url: str = DEFAULT_BACKEND_URL
    timeout_s: float = DEFAULT_BACKEND_TIMEOUT_S
    marker_size_m: float = DEFAULT_MARKER_SIZE_M
    min_markers_detected: int = DEFAULT_MIN_MARKERS_DETECTED
    max_reproj_error: float = DEFAULT_MAX_REPROJ_ERROR


@dataclass(slots=True)
class StreamSettings:
    resolution: Resolution = DEFAULT_RESOLUTION
    fps: int = DEFAULT_FPS
    warmup_s: float = DEFAULT_WARMUP_S
    max_retries: int = DEFAULT_STREAM_MAX_RETRIES
    retry_delay_s: float = DEFAULT_STREAM_RETRY_DELAY_S
    ready_timeout_s: float = DEFAULT_READY_TIMEOUT_S


@dataclass(slots=True)
class RegistrySettings:
    probe_attempts: int = DEFAULT_PROBE_ATTEMPTS
    probe_delay_s: float = DEFAULT_PROBE_DELAY_S
    hotplug_interval_s: float = DEFAULT_HOTPLUG_INTERVAL_S
    empty_refresh_delay_s: float = DEFAULT_EMPTY_REFRESH_DELAY_S


@dataclass(slots=True)
class CaptureSettings:
    target_per_camera: int = DEFAULT_CAPTURE_TARGET
    num_cameras: int = DEFAULT_NUM_CAMERAS
    jpeg_quality: int = DEFAULT_JPEG_QUALITY


@dataclass(slots=True)
class PollingSettings:
    interval_s: float = DEFAULT_POLL_INTERVAL_S


@dataclass(slots=True)
class LoggingSettings:
    level: str = DEFAULT_LOG_LEVEL
    file: Path = DEFAULT_LOG_FILE


@dataclass(slots=True)
class RigConfig:
    backend: BackendSettings = field(default_factory=BackendSettings)
    stream: StreamSettings = field(default_factory=StreamSettings)
    registry: RegistrySettings = field(default_factory=RegistrySettings)
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public API


def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``key = value`` lines into a flat dict of strings."""
    config: Dict[str, str] = {}

    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if '=' not in line:
            continue

        key, value = line.split('=', 1)
        key = key.strip()
        value = value.strip()

        if '#' in value:
            value = value.split('#')[0].strip()

        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]

        config[key] = value

    return config


def build_config(
    values: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    logger: LoggerLike = None,
) -> RigConfig:
    """Build a typed config from parsed values, environment and explicit overrides.

    Precedence (lowest first): defaults, file values, environment, overrides.
    """

    log = ensure_structured_logger(logger, "Config")
    merged: Dict[str, Any] = dict(values or {})
    env = os.environ if environ is None else environ
    env_url = env.get(BACKEND_URL_ENV)
    if env_url:
        merged["backend.base_url"] = env_url
    if overrides:
        for key, value in overrides.items():
            if value is not None:
                merged[key] = value

    backend = BackendSettings(
        base_url=_coerce_str(merged, ("backend.base_url",), DEFAULT_BACKEND_URL).rstrip("/"),
        timeout_s=_coerce_float(merged, ("backend.timeout_s",), DEFAULT_BACKEND_TIMEOUT_S),
        marker_size_m=_coerce_float(merged, ("backend.marker_size_m",), DEFAULT_MARKER_SIZE_M),
        min_markers_detected=_coerce_int(merged, ("backend.min_markers_detected",), DEFAULT_MIN_MARKERS_DETECTED),
        max_reproj_error=_coerce_float(merged, ("backend.max_reproj_error",), DEFAULT_MAX_REPROJ_ERROR),
    )

    stream = StreamSettings(
        resolution=_coerce_resolution(merged, ("stream.resolution",), default=DEFAULT_RESOLUTION, logger=log),
        fps=_coerce_int(merged, ("stream.fps",), DEFAULT_FPS),
        warmup_s=_coerce_float(merged, ("stream.warmup_s",), DEFAULT_WARMUP_S),
        max_retries=_coerce_int(merged, ("stream.max_retries",), DEFAULT_STREAM_MAX_RETRIES),
        retry_delay_s=_coerce_float(merged, ("stream.retry_delay_s",), DEFAULT_STREAM_RETRY_DELAY_S),
        ready_timeout_s=_coerce_float(merged, ("stream.ready_timeout_s",), DEFAULT_READY_TIMEOUT_S),
    )

    registry = RegistrySettings(
        probe_attempts=_coerce_int(merged, ("registry.probe_attempts",), DEFAULT_PROBE_ATTEMPTS),
        probe_delay_s=_coerce_float(merged, ("registry.probe_delay_s",), DEFAULT_PROBE_DELAY_S),
        hotplug_interval_s=_coerce_float(merged, ("registry.hotplug_interval_s",), DEFAULT_HOTPLUG_INTERVAL_S),
        empty_refresh_delay_s=_coerce_float(
            merged, ("registry.empty_refresh_delay_s",), DEFAULT_EMPTY_REFRESH_DELAY_S
        ),
    )

    capture = CaptureSettings(
        target_per_camera=_coerce_int(merged, ("capture.target_per_camera",), DEFAULT_CAPTURE_TARGET),
        num_cameras=_coerce_int(merged, ("capture.num_cameras",), DEFAULT_NUM_CAMERAS),
        jpeg_quality=_coerce_int(merged, ("capture.jpeg_quality",), DEFAULT_JPEG_QUALITY),
    )

    polling = PollingSettings(
        interval_s=_coerce_float(merged, ("polling.interval_s",), DEFAULT_POLL_INTERVAL_S),
    )

    logging_settings = LoggingSettings(
        level=_coerce_str(merged, ("logging.level", "log_level"), DEFAULT_LOG_LEVEL),
        file=_coerce_path(merged, ("logging.file", "log_file"), DEFAULT_LOG_FILE),
    )

    return RigConfig(
        backend=backend,
        stream=stream,
        registry=registry,
        capture=capture,
        polling=polling,
        logging=logging_settings,
    )


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> RigConfig:
    """Read ``path`` (default: the packaged config.txt) synchronously."""
    log = ensure_structured_logger(logger, "Config")
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    values: Dict[str, str] = {}
    if config_path.exists():
        with open(config_path, 'r', encoding='utf-8') as fh:
            values = parse_config_lines(fh)
    else:
        log.warning("Config file %s not found, using defaults", config_path)
    return build_config(values, overrides, logger=log)


async def load_config_async(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> RigConfig:
    """Async version of :func:`load_config` backed by aiofiles."""
    log = ensure_structured_logger(logger, "Config")
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    values: Dict[str, str] = {}
    if config_path.exists():
        async with aiofiles.open(config_path, 'r', encoding='utf-8') as fh:
            content = await fh.read()
        values = parse_config_lines(content.splitlines())
    else:
        log.warning("Config file %s not found, using defaults", config_path)
    return build_config(values, overrides, logger=log)


# ---------------------------------------------------------------------------
# Internal helpers


def _first_present(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _coerce_str(data: Mapping[str, Any], keys: Tuple[str, ...], default: str) -> str:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    text = str(raw).strip()
    return text or default


def _coerce_int(data: Mapping[str, Any], keys: Tuple[str, ...], default: int) -> int:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _coerce_float(data: Mapping[str, Any], keys: Tuple[str, ...], default: float) -> float:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _coerce_resolution(
    data: Mapping[str, Any],
    keys: Tuple[str, ...],
    *,
    default: Resolution,
    logger,
) -> Resolution:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    try:
        return _parse_resolution(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse resolution from %r, using default %s", raw, default)
        return default


def _parse_resolution(raw: Any) -> Resolution:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return int(raw[0]), int(raw[1])
    if isinstance(raw, str) and "x" in raw.lower():
        width, height = raw.lower().split("x", 1)
        return int(width.strip()), int(height.strip())
    if isinstance(raw, str) and "," in raw:
        width, height = raw.split(",", 1)
        return int(width.strip()), int(height.strip())
    raise ValueError(f"Unsupported resolution value: {raw!r}")


def _coerce_path(data: Mapping[str, Any], keys: Tuple[str, ...], default: Path) -> Path:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return Path(default)
    return Path(str(raw))


__all__ = [
    "BACKEND_URL_ENV",
    "DEFAULT_CONFIG_PATH",
    "BackendSettings",
    "StreamSettings",
    "RegistrySettings",
    "CaptureSettings",
    "PollingSettings",
    "LoggingSettings",
    "RigConfig",
    "parse_config_lines",
    "build_config",
    "load_config",
    "load_config_async",
]
