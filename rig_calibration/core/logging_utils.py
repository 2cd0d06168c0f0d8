"""Component-tagged loggers under the ``rig_calibration`` namespace."""

from __future__ import annotations

import logging
from typing import Optional, Union

LOGGER_NAMESPACE = "rig_calibration"


class StructuredLogger(logging.LoggerAdapter):
    """Prefixes every message with ``[Component]``."""

    def __init__(self, logger: logging.Logger, component: str) -> None:
        super().__init__(logger, {"component": component})
        self.component = component

    def process(self, msg, kwargs):
        return f"[{self.component}] {msg}", kwargs


LoggerLike = Optional[Union[StructuredLogger, logging.Logger]]


def get_module_logger(component: str) -> StructuredLogger:
    """Return the logger for ``rig_calibration.<component>``."""
    return StructuredLogger(logging.getLogger(f"{LOGGER_NAMESPACE}.{component}"), component)


def ensure_structured_logger(logger: LoggerLike, component: str) -> StructuredLogger:
    """Wrap a caller-supplied logger, or fall back to the component's module logger."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component)
    return get_module_logger(component)


__all__ = ["LoggerLike", "StructuredLogger", "ensure_structured_logger", "get_module_logger"]
