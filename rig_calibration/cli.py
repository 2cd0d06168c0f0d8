"""Command line entry point.

Examples::

    rig-calibration devices
    rig-calibration intrinsic --slot 0 --count 15 --interval 2
    rig-calibration extrinsic
    rig-calibration stop
    rig-calibration collect --out training --count 20 --assess
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import sys
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence, Tuple

import cv2

from rig_calibration.backend.client import CalibrationBackendClient
from rig_calibration.capture.extrinsic import JobStatus
from rig_calibration.core.config import RigConfig, load_config_async
from rig_calibration.core.errors import CaptureRejectedError, DetectionError, RigError
from rig_calibration.core.logging_config import LOG_LEVELS, configure_logging
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.devices.registry import DeviceRegistry
from rig_calibration.media.hotplug import DeviceChangeMonitor
from rig_calibration.media.opencv import OpenCVCameraPlatform
from rig_calibration.streams.controller import SlotState
from rig_calibration.wizard import CalibrationWizard

logger = get_module_logger("CLI")


def _positive_number(value: str, typ: type, name: str):
    try:
        parsed = typ(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Value must be a {name}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


def positive_int(value: str) -> int:
    return _positive_number(value, int, "integer")


def positive_float(value: str) -> float:
    return _positive_number(value, float, "number")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rig-calibration",
        description="Camera acquisition and calibration capture for a 3-camera rig",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (key = value); defaults to the packaged config.txt",
    )
    parser.add_argument(
        "--backend-url",
        type=str,
        default=None,
        help="Calibration backend base URL (overrides config and CALIBRATION_API_URL)",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity (default: from config)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Path for the rotating log file (default: from config)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("devices", help="Enumerate connected cameras")

    intrinsic = commands.add_parser("intrinsic", help="Capture intrinsic calibration images for one camera")
    intrinsic.add_argument("--slot", type=int, required=True, help="Camera slot (0-based)")
    intrinsic.add_argument(
        "--count",
        type=positive_int,
        default=None,
        help="Number of confirmed captures to collect (default: capture target)",
    )
    intrinsic.add_argument(
        "--interval",
        type=positive_float,
        default=2.0,
        help="Seconds between capture attempts (default: 2.0)",
    )
    intrinsic.add_argument(
        "--save-dir",
        type=Path,
        default=None,
        help="Write each confirmed capture, with markers outlined, to this directory",
    )

    commands.add_parser("extrinsic", help="Run a synchronized capture and calibration across all cameras")
    commands.add_parser("stop", help="Abort the running calibration job")

    collect = commands.add_parser("collect", help="Collect training images from the cameras and export them")
    collect.add_argument(
        "--slot",
        type=int,
        action="append",
        default=None,
        help="Camera slot (0-based) to capture from; repeatable (default: every ready slot)",
    )
    collect.add_argument("--count", type=positive_int, default=10, help="Images per camera (default: 10)")
    collect.add_argument(
        "--interval",
        type=positive_float,
        default=1.0,
        help="Seconds between capture rounds (default: 1.0)",
    )
    collect.add_argument("--out", type=Path, required=True, help="Directory the images are exported to")
    collect.add_argument(
        "--assess",
        action="store_true",
        help="Print the backend's detection quality score for every captured frame",
    )

    return parser


async def load_settings(args: argparse.Namespace) -> RigConfig:
    overrides = {
        "backend.base_url": args.backend_url,
        "logging.level": args.log_level,
        "logging.file": args.log_file,
    }
    return await load_config_async(args.config, overrides)


async def cmd_devices(config: RigConfig) -> int:
    platform = OpenCVCameraPlatform()
    registry = DeviceRegistry(platform, settings=config.registry, stream_settings=config.stream)
    devices = await registry.refresh()
    if not devices:
        print("No cameras detected")
        return 1
    for index, device in enumerate(devices):
        print(f"{index}: {device.label} ({device.id})")
    return 0


async def cmd_intrinsic(
    config: RigConfig,
    slot: int,
    count: Optional[int],
    interval: float,
    save_dir: Optional[Path],
) -> int:
    if not 0 <= slot < config.capture.num_cameras:
        logger.error("Slot must be between 0 and %d", config.capture.num_cameras - 1)
        return 2
    wanted = min(count or config.capture.target_per_camera, config.capture.target_per_camera)
    if save_dir is not None:
        save_dir.mkdir(parents=True, exist_ok=True)

    async with _session(config) as (wizard, _backend):
        await wizard.wait_for_cameras()
        if wizard.controllers[slot].state is not SlotState.READY:
            logger.error("Camera %d is not available", slot + 1)
            return 1

        wizard.next_step()
        wizard.switch_camera(slot)
        captured = 0
        while captured < wanted:
            try:
                captured = await wizard.intrinsic_capture(slot)
            except DetectionError as exc:
                logger.info("Capture not counted: %s", exc)
            except CaptureRejectedError as exc:
                logger.warning("%s", exc)
                break
            else:
                print(f"Camera {slot + 1}: {captured}/{wanted}")
                if save_dir is not None:
                    _save_annotated(wizard, slot, save_dir / f"camera{slot + 1}_{captured:02d}.jpg")
                if captured >= wanted:
                    break
            await asyncio.sleep(interval)
    return 0 if captured >= wanted else 1


async def cmd_extrinsic(config: RigConfig) -> int:
    async with _session(config) as (wizard, _backend):
        await wizard.wait_for_cameras()
        wizard.next_step()
        wizard.next_step()
        try:
            await wizard.extrinsic_capture()
        except RigError as exc:
            print(f"Extrinsic capture failed: {exc}")
            return 1
        job = await wizard.extrinsic.wait_for_completion()
        print(f"{job.status.value}: {job.message} ({job.progress}%)")
        return 0 if job.status is JobStatus.COMPLETE else 1


async def cmd_collect(
    config: RigConfig,
    slots: Optional[Sequence[int]],
    count: int,
    interval: float,
    out: Path,
    assess: bool,
) -> int:
    async with _session(config) as (wizard, _backend):
        await wizard.wait_for_cameras()
        ready = [index for index, c in enumerate(wizard.controllers) if c.state is SlotState.READY]
        wanted = [index for index in (slots or ready) if index in ready]
        if not wanted:
            logger.error("No requested camera is ready")
            return 1

        store = wizard.training
        for round_index in range(count):
            for slot in wanted:
                try:
                    captured = await store.capture(slot)
                except RigError as exc:
                    logger.warning("Camera %d: %s", slot + 1, exc)
                    continue
                line = f"Camera {slot + 1}: {captured}/{count}"
                if assess:
                    try:
                        quality = await wizard.assess_quality(slot)
                    except RigError as exc:
                        line += f" (quality unavailable: {exc})"
                    else:
                        line += f" (quality {quality.score:.2f})"
                print(line)
            if round_index + 1 < count:
                await asyncio.sleep(interval)

        try:
            paths = await store.export(out)
        except RigError as exc:
            print(f"Export failed: {exc}")
            return 1
    print(f"Exported {len(paths)} images to {out}")
    return 0 if len(paths) == count * len(wanted) else 1


async def cmd_stop(config: RigConfig) -> int:
    async with CalibrationBackendClient.from_config(config) as backend:
        reply = await backend.stop()
    print(reply.message)
    return 0 if reply.success else 1


@contextlib.asynccontextmanager
async def _session(config: RigConfig) -> AsyncIterator[Tuple[CalibrationWizard, CalibrationBackendClient]]:
    """Start platform, backend and wizard; tear all of them down on exit."""
    platform = OpenCVCameraPlatform(DeviceChangeMonitor(config.registry.hotplug_interval_s))
    async with CalibrationBackendClient.from_config(config) as backend:
        wizard = CalibrationWizard(platform, backend, config=config)
        await platform.start()
        try:
            await wizard.start()
            yield wizard, backend
        finally:
            await wizard.close()
            await platform.stop()


def _save_annotated(wizard: CalibrationWizard, slot: int, path: Path) -> None:
    frame = wizard.annotated_frame(slot)
    if frame is None:
        return
    if not cv2.imwrite(str(path), frame):
        logger.warning("Could not write %s", path)


async def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    config = await load_settings(args)
    configure_logging(config.logging.level, log_file=config.logging.file)
    logger.debug("Backend: %s", config.backend.base_url)

    if args.command == "devices":
        return await cmd_devices(config)
    if args.command == "intrinsic":
        return await cmd_intrinsic(config, args.slot, args.count, args.interval, args.save_dir)
    if args.command == "extrinsic":
        return await cmd_extrinsic(config)
    if args.command == "stop":
        return await cmd_stop(config)
    if args.command == "collect":
        return await cmd_collect(config, args.slot, args.count, args.interval, args.out, args.assess)
    parser.error(f"Unknown command: {args.command}")
    return 2


def run(argv: Optional[Sequence[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(run())
