"""
Per-slot stream lifecycle.

Each camera slot owns one ``StreamController``. It acquires a live stream for
a device, attaches it to the slot's sink, retries failed acquisitions with a
fixed backoff and guarantees that the previous stream is stopped before a new
one is requested and that nothing stays live after ``dispose()``.

State machine::

    IDLE -> INITIALIZING -> READY
            INITIALIZING -> ERROR -> INITIALIZING (new acquire)
    any  -> IDLE (dispose)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from rig_calibration.core.asyncio_utils import cancel_and_wait, create_logged_task
from rig_calibration.core.config import StreamSettings
from rig_calibration.core.errors import StreamError
from rig_calibration.core.logging_utils import get_module_logger
from rig_calibration.core.notifications import LoggingNotificationSink, NotificationKind, NotificationSink
from rig_calibration.core.retry_policy import RetryPolicy
from rig_calibration.media.base import CameraPlatform, LiveStream, StreamConstraints, VideoSink

logger = get_module_logger("StreamController")


class SlotState(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass(slots=True)
class StreamHandle:
    device_id: str
    stream: Optional[LiveStream]
    state: SlotState


StreamCallback = Callable[[int, str, LiveStream], None]


def _stop_late_stream(future: "asyncio.Future[LiveStream]") -> None:
    # Acquisition finished after its owner was cancelled: the stream is unowned.
    if future.cancelled():
        return
    if future.exception() is not None:
        return
    stream = future.result()
    logger.debug("Stopping stream for %s that resolved after teardown", stream.device_id)
    stream.stop()


class StreamController:
    """Acquires and owns the live stream of one camera slot."""

    def __init__(
        self,
        slot_index: int,
        platform: CameraPlatform,
        *,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[StreamSettings] = None,
        on_stream: Optional[StreamCallback] = None,
    ) -> None:
        self.slot_index = slot_index
        self._platform = platform
        self._notifier = notifier or LoggingNotificationSink()
        self._settings = settings or StreamSettings()
        self._on_stream = on_stream

        self._state = SlotState.IDLE
        self._device_id: Optional[str] = None
        self._sink: Optional[VideoSink] = None
        self._stream: Optional[LiveStream] = None
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

        self.attempts = 0
        self.last_error: Optional[StreamError] = None

    # ------------------------------------------------------------------
    # Properties

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    @property
    def stream(self) -> Optional[LiveStream]:
        return self._stream

    @property
    def sink(self) -> Optional[VideoSink]:
        return self._sink

    @property
    def handle(self) -> Optional[StreamHandle]:
        if self._device_id is None:
            return None
        return StreamHandle(self._device_id, self._stream, self._state)

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Public API

    def mount(self, device_id: str, sink: VideoSink) -> Optional[asyncio.Task]:
        """Start acquisition after the warm-up delay without waiting for it.

        Returns the acquisition task, or None when one is already in flight.
        """
        return self._start(device_id, sink, self._settings.warmup_s)

    async def acquire(self, device_id: str, sink: VideoSink, *, warmup: float = 0.0) -> SlotState:
        """
        Acquire a stream for ``device_id`` and wait for the outcome.

        A call made while an acquisition is already in flight for this slot is
        a no-op and returns the current state. Cancelling the caller does not
        cancel the acquisition; use ``dispose()`` for that.
        """
        task = self._start(device_id, sink, warmup)
        if task is None:
            logger.debug("Slot %d: acquisition already in flight, ignoring", self.slot_index)
            return self._state
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return self._state

    async def wait(self) -> SlotState:
        """Wait for the in-flight acquisition (if any) to settle."""
        task = self._task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._state

    async def dispose(self) -> None:
        """Cancel any pending acquisition, stop all tracks and return to IDLE."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not asyncio.current_task():
            await cancel_and_wait(task)
        self._release()
        self._sink = None
        previous = self._device_id
        self._device_id = None
        self._set_state(SlotState.IDLE)
        if previous is not None:
            logger.info("Slot %d disposed (device %s)", self.slot_index, previous)

    # ------------------------------------------------------------------
    # Internals

    def _start(self, device_id: str, sink: VideoSink, warmup: float) -> Optional[asyncio.Task]:
        if self.in_flight:
            return None
        if self._sink is not None and self._sink is not sink:
            self._release(self._sink)
        self._device_id = device_id
        self._sink = sink
        self.attempts = 0
        self.last_error = None
        self._set_state(SlotState.INITIALIZING)
        generation = self._generation
        self._task = create_logged_task(
            self._run(generation, device_id, sink, warmup),
            logger=logger,
            name=f"StreamController[{self.slot_index}]",
        )
        return self._task

    async def _run(self, generation: int, device_id: str, sink: VideoSink, warmup: float) -> None:
        try:
            if warmup > 0:
                await asyncio.sleep(warmup)

            max_attempts = self._settings.max_retries + 1
            policy = RetryPolicy(max_attempts=max_attempts, delay=self._settings.retry_delay_s)

            def on_retry(attempt: int, error: Optional[str]) -> None:
                logger.warning(
                    "Slot %d: retrying camera %s (%d/%d): %s",
                    self.slot_index, device_id, attempt - 1, self._settings.max_retries, error,
                )

            result = await policy.execute(lambda: self._attempt(generation, device_id, sink), on_retry=on_retry)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._release(sink)
                self._set_state(SlotState.IDLE)
            raise

        if generation != self._generation:
            return

        if result.success:
            stream = result.result_data
            self._set_state(SlotState.READY)
            if self._on_stream is not None:
                try:
                    self._on_stream(self.slot_index, device_id, stream)
                except Exception as e:
                    logger.error("Slot %d: stream callback failed: %s", self.slot_index, e)
            self._notifier.notify(
                NotificationKind.SUCCESS,
                "Camera Connected",
                f"Successfully connected to camera {device_id}",
            )
            return

        error = StreamError(
            f"Failed to initialize camera {device_id} after {self._settings.max_retries} retries: "
            f"{result.final_error or 'Unknown error'}",
            device_id=device_id,
            attempts=result.attempt_count,
        )
        error.__cause__ = result.last_exception
        self.last_error = error
        self._set_state(SlotState.ERROR)
        logger.error("Slot %d: %s", self.slot_index, error)
        self._notifier.notify(NotificationKind.ERROR, "Camera Error", str(error))

    async def _attempt(self, generation: int, device_id: str, sink: VideoSink) -> LiveStream:
        self.attempts += 1
        self._set_state(SlotState.INITIALIZING)
        self._release(sink)

        constraints = StreamConstraints.video(device_id, self._settings.resolution, self._settings.fps)
        logger.debug("Slot %d: requesting %s (attempt %d)", self.slot_index, constraints, self.attempts)
        stream = await self._request_stream(constraints)

        if generation != self._generation:
            stream.stop()
            raise asyncio.CancelledError()

        self._stream = stream
        try:
            sink.attach(stream)
            await sink.wait_ready(self._settings.ready_timeout_s)
        except BaseException:
            self._release(sink)
            raise
        return stream

    async def _request_stream(self, constraints: StreamConstraints) -> LiveStream:
        request = asyncio.ensure_future(self._platform.get_user_media(constraints))
        try:
            return await asyncio.shield(request)
        except asyncio.CancelledError:
            request.add_done_callback(_stop_late_stream)
            raise

    def _release(self, sink: Optional[VideoSink] = None) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
        target = sink if sink is not None else self._sink
        if target is not None:
            target.detach()

    def _set_state(self, state: SlotState) -> None:
        if state is self._state:
            return
        logger.info("Slot %d: %s -> %s", self.slot_index, self._state.value, state.value)
        self._state = state


__all__ = ["SlotState", "StreamHandle", "StreamController", "StreamCallback"]
