"""Unit tests for logging helpers, task helpers and the notification sink."""

import asyncio
import logging

import pytest

from rig_calibration.core.asyncio_utils import cancel_and_wait, create_logged_task
from rig_calibration.core.logging_config import configure_logging, parse_level
from rig_calibration.core.logging_utils import StructuredLogger, ensure_structured_logger, get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationKind, NotificationSink


class TestStructuredLogger:
    def test_namespaced_and_prefixed(self, caplog):
        logger = get_module_logger("StreamController")
        assert logger.name == "rig_calibration.StreamController"

        with caplog.at_level(logging.INFO, logger="rig_calibration"):
            logger.info("Slot %d ready", 1)

        assert "[StreamController] Slot 1 ready" in caplog.text

    def test_plain_logger_is_wrapped(self, caplog):
        plain = logging.getLogger("rig_calibration.custom")
        logger = ensure_structured_logger(plain, "Config")

        assert isinstance(logger, StructuredLogger)
        assert ensure_structured_logger(logger, "Other") is logger
        assert ensure_structured_logger(None, "Config").name == "rig_calibration.Config"
        with caplog.at_level(logging.DEBUG, logger="rig_calibration"):
            logger.debug("parsed %s", "rig.txt")
        assert "[Config] parsed rig.txt" in caplog.text


class TestConfigureLogging:
    def test_file_handler_and_quiet_loggers(self, tmp_path):
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level
        log_file = tmp_path / "logs" / "rig.log"
        handlers = configure_logging("debug", console=False, log_file=log_file, quiet=("aiohttp",))
        try:
            assert len(handlers) == 1
            get_module_logger("Test").info("written")
            for handler in root.handlers:
                handler.flush()
            assert "[Test] written" in log_file.read_text()
            assert logging.getLogger("aiohttp").level == logging.WARNING
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
            logging.getLogger("aiohttp").setLevel(logging.NOTSET)

    def test_parse_level(self):
        assert parse_level("WARNING") == logging.WARNING
        assert parse_level(logging.DEBUG) == logging.DEBUG
        with pytest.raises(ValueError):
            parse_level("loud")


class TestTaskHelpers:
    @pytest.mark.asyncio
    async def test_logged_task_reports_exception(self, caplog):
        async def boom():
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR, logger="rig_calibration"):
            task = create_logged_task(boom(), name="boom-task", logger=get_module_logger("Test"))
            assert task.get_name() == "boom-task"
            with pytest.raises(RuntimeError):
                await task

        assert "Unhandled exception in boom-task" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_and_wait(self):
        task = asyncio.create_task(asyncio.sleep(10))
        await cancel_and_wait(task)
        assert task.cancelled()
        await cancel_and_wait(None)


class TestLoggingNotificationSink:
    def test_satisfies_protocol(self):
        assert isinstance(LoggingNotificationSink(), NotificationSink)

    def test_errors_logged_at_error(self, caplog):
        sink = LoggingNotificationSink()
        with caplog.at_level(logging.INFO, logger="rig_calibration"):
            sink.notify(NotificationKind.ERROR, "Camera Error", "gone")
            sink.notify(NotificationKind.SUCCESS, "Camera Connected", "ok")

        levels = [record.levelno for record in caplog.records]
        assert logging.ERROR in levels
        assert logging.INFO in levels
        assert "Camera Error: gone" in caplog.text
