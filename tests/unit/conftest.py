"""Unit test fixtures for isolated, fast test execution.

Every timing in the configuration below is shrunk to zero or a few
milliseconds, so retry, warm-up and polling paths run instantly while
keeping the real attempt counts (1 + 7 stream attempts, 5 probe attempts).
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from rig_calibration.core.config import RigConfig


def make_fast_config() -> RigConfig:
    config = RigConfig()
    config.stream.warmup_s = 0.0
    config.stream.retry_delay_s = 0.0
    config.stream.ready_timeout_s = 0.5
    config.registry.probe_delay_s = 0.0
    config.registry.empty_refresh_delay_s = 0.01
    config.registry.hotplug_interval_s = 0.01
    config.polling.interval_s = 0.01
    return config


@pytest.fixture(scope="function")
def fast_config() -> RigConfig:
    """Default configuration with every delay shrunk for tests."""
    return make_fast_config()


@pytest.fixture(scope="function")
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Clean working directory with no backend URL in the environment."""
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.delenv("CALIBRATION_API_URL", raising=False)

    original_cwd = os.getcwd()
    os.chdir(work_dir)
    yield work_dir
    os.chdir(original_cwd)
