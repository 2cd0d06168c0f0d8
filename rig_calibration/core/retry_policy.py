"""
Retry Policy - bounded attempts with a fixed delay between them.

Camera permission probes and stream acquisitions fail transiently while the
platform is still registering devices. Both are retried locally with a fixed
delay between attempts; only the final failure is surfaced to callers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from rig_calibration.core.logging_utils import get_module_logger

logger = get_module_logger("RetryPolicy")

RetryCallback = Callable[[int, Optional[str]], None]


@dataclass
class RetryResult:
    """Outcome of ``RetryPolicy.execute``."""
    success: bool
    errors: List[str] = field(default_factory=list)
    last_exception: Optional[BaseException] = None
    result_data: Any = None

    @property
    def attempt_count(self) -> int:
        return len(self.errors) + (1 if self.success else 0)

    @property
    def final_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None


class RetryPolicy:
    """
    Run an async operation up to ``max_attempts`` times, ``delay`` seconds apart.

    Usage:
        policy = RetryPolicy(max_attempts=5, delay=3.0)
        result = await policy.execute(probe_camera)
        if not result.success:
            raise CameraPermissionError(result.final_error) from result.last_exception
    """

    def __init__(self, max_attempts: int, delay: float):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.delay = delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        on_retry: Optional[RetryCallback] = None,
    ) -> RetryResult:
        """
        Await ``operation`` until it returns without raising.

        ``on_retry(attempt_number, last_error)`` is called before each retry.
        ``asyncio.CancelledError`` is never retried and propagates unchanged.
        """
        result = RetryResult(success=False)

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                if on_retry:
                    on_retry(attempt, result.final_error)
                logger.debug("Retry attempt %d/%d after %.2fs", attempt, self.max_attempts, self.delay)
                await asyncio.sleep(self.delay)

            try:
                result.result_data = await operation()
            except Exception as exc:
                result.errors.append(str(exc) or exc.__class__.__name__)
                result.last_exception = exc
                logger.debug("Attempt %d failed: %s", attempt, result.final_error)
                continue

            result.success = True
            return result

        return result


__all__ = ["RetryPolicy", "RetryResult", "RetryCallback"]
