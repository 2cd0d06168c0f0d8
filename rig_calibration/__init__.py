"""Camera lifecycle and calibration capture orchestration for a 3-camera rig."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

try:
    __version__ = metadata.version("rig-calibration")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Convenience wrapper that runs the async command line entry point."""
    from .cli import run as cli_run
    return cli_run(argv)


__all__ = ["__version__", "run"]
