"""User-visible notification sink.

Components never talk to a UI directly; they receive a ``NotificationSink``
and report human readable status through ``notify(kind, title, detail)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from .logging_utils import LoggerLike, ensure_structured_logger


class NotificationKind(Enum):
    """Severity of a user-visible notification."""
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, kind: NotificationKind, title: str, detail: str) -> None:
        ...


class LoggingNotificationSink:
    """Default sink that routes notifications into the log."""

    def __init__(self, logger: LoggerLike = None) -> None:
        self._logger = ensure_structured_logger(logger, "Notifications")

    def notify(self, kind: NotificationKind, title: str, detail: str) -> None:
        if kind is NotificationKind.ERROR:
            self._logger.error("%s: %s", title, detail)
        else:
            self._logger.info("%s: %s", title, detail)


__all__ = ["NotificationKind", "NotificationSink", "LoggingNotificationSink"]
