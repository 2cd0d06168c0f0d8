"""Unit tests for configuration parsing and loading."""

from pathlib import Path

import pytest

from rig_calibration.core.config import (
    BACKEND_URL_ENV,
    DEFAULT_CONFIG_PATH,
    RigConfig,
    build_config,
    load_config,
    load_config_async,
    parse_config_lines,
)


class TestParseConfigLines:
    def test_skips_comments_and_blank_lines(self):
        values = parse_config_lines([
            "# comment",
            "",
            "stream.fps = 15",
            "not a setting",
        ])
        assert values == {"stream.fps": "15"}

    def test_strips_inline_comments_and_quotes(self):
        values = parse_config_lines([
            'backend.base_url = "http://backend:9000"  # remote',
            "logging.level = 'debug'",
        ])
        assert values["backend.base_url"] == "http://backend:9000"
        assert values["logging.level"] == "debug"


class TestBuildConfig:
    def test_defaults(self):
        config = build_config({}, environ={})

        assert config.backend.base_url == "http://127.0.0.1:8000"
        assert config.stream.resolution == (1280, 720)
        assert config.stream.fps == 30
        assert config.stream.warmup_s == 2.5
        assert config.stream.max_retries == 7
        assert config.stream.retry_delay_s == 3.0
        assert config.registry.probe_attempts == 5
        assert config.registry.probe_delay_s == 3.0
        assert config.capture.target_per_camera == 15
        assert config.capture.jpeg_quality == 95
        assert config.polling.interval_s == 1.0
        assert config.backend.min_markers_detected == 4

    def test_file_values_are_typed(self):
        config = build_config(
            {"stream.resolution": "640x480", "stream.max_retries": "3", "backend.timeout_s": "2.5"},
            environ={},
        )
        assert config.stream.resolution == (640, 480)
        assert config.stream.max_retries == 3
        assert config.backend.timeout_s == 2.5

    def test_unparseable_values_fall_back_to_defaults(self):
        config = build_config(
            {"stream.resolution": "wide", "stream.fps": "fast", "polling.interval_s": ""},
            environ={},
        )
        assert config.stream.resolution == (1280, 720)
        assert config.stream.fps == 30
        assert config.polling.interval_s == 1.0

    def test_environment_overrides_file(self):
        config = build_config(
            {"backend.base_url": "http://file:1"},
            environ={BACKEND_URL_ENV: "http://env:2/"},
        )
        assert config.backend.base_url == "http://env:2"

    def test_explicit_overrides_win(self):
        config = build_config(
            {"backend.base_url": "http://file:1"},
            {"backend.base_url": "http://cli:3", "logging.level": None},
            environ={BACKEND_URL_ENV: "http://env:2"},
        )
        assert config.backend.base_url == "http://cli:3"
        assert config.logging.level == "INFO"


class TestLoadConfig:
    def test_packaged_defaults_match_dataclass_defaults(self, isolated_env):
        assert DEFAULT_CONFIG_PATH.exists()
        config = load_config()
        defaults = RigConfig()
        assert config.stream == defaults.stream
        assert config.registry == defaults.registry
        assert config.capture == defaults.capture
        assert config.backend == defaults.backend

    def test_missing_file_uses_defaults(self, isolated_env):
        config = load_config(isolated_env / "missing.txt")
        assert config.capture.target_per_camera == 15

    @pytest.mark.asyncio
    async def test_async_load_reads_file(self, isolated_env):
        path = isolated_env / "rig.txt"
        path.write_text("capture.target_per_camera = 10\nstream.warmup_s = 0\n")

        config = await load_config_async(path)

        assert config.capture.target_per_camera == 10
        assert config.stream.warmup_s == 0.0

    @pytest.mark.asyncio
    async def test_async_load_applies_overrides(self, isolated_env):
        path = isolated_env / "rig.txt"
        path.write_text("logging.file = ./a.log\n")

        config = await load_config_async(path, {"logging.file": Path("b.log")})

        assert config.logging.file == Path("b.log")
