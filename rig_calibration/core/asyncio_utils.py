"""Background task helpers shared by the slot controllers, poller and wizard."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str,
    logger: LoggerLike = None,
) -> asyncio.Task[Any]:
    """Start ``coro`` as a named task whose failure is logged when it finishes."""
    task_logger = ensure_structured_logger(logger, "Tasks")
    task = asyncio.get_running_loop().create_task(coro, name=name)

    def _log_failure(done: asyncio.Task[Any]) -> None:
        if done.cancelled():
            return
        exc = done.exception()
        if exc is not None:
            task_logger.error("Unhandled exception in %s: %s", done.get_name(), exc, exc_info=exc)

    task.add_done_callback(_log_failure)
    return task


async def cancel_and_wait(task: Optional[asyncio.Task[Any]]) -> None:
    """Cancel ``task`` (if still running) and wait for it to unwind."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


__all__ = ["create_logged_task", "cancel_and_wait"]
