"""Per-slot capture counters bounded to ``[0, target]``."""

from __future__ import annotations

from typing import Dict, Iterable

from rig_calibration.core.config import DEFAULT_CAPTURE_TARGET
from rig_calibration.core.errors import CaptureRejectedError


class CaptureCounterMap:
    """
    Owns one capture counter per camera slot.

    ``increment`` is the only way up and refuses at the target, so a counter
    can never leave ``[0, target]``.
    """

    def __init__(self, slots: Iterable[int] = (0, 1, 2), target: int = DEFAULT_CAPTURE_TARGET) -> None:
        if target < 1:
            raise ValueError("target must be >= 1")
        self._target = target
        self._counts: Dict[int, int] = {int(slot): 0 for slot in slots}
        if not self._counts:
            raise ValueError("at least one slot is required")

    @property
    def target(self) -> int:
        return self._target

    @property
    def slots(self) -> tuple[int, ...]:
        return tuple(self._counts)

    def __contains__(self, slot: object) -> bool:
        return slot in self._counts

    def get(self, slot: int) -> int:
        return self._counts[self._check(slot)]

    def remaining(self, slot: int) -> int:
        return self._target - self.get(slot)

    def is_complete(self, slot: int) -> bool:
        return self.get(slot) >= self._target

    def increment(self, slot: int) -> int:
        slot = self._check(slot)
        current = self._counts[slot]
        if current >= self._target:
            raise CaptureRejectedError(
                f"Camera {slot + 1} already has {self._target} of {self._target} captures"
            )
        self._counts[slot] = current + 1
        return current + 1

    def reset(self, slot: int) -> None:
        self._counts[self._check(slot)] = 0

    def snapshot(self) -> Dict[int, int]:
        return dict(self._counts)

    def _check(self, slot: int) -> int:
        if slot not in self._counts:
            raise ValueError(f"Unknown camera slot: {slot}")
        return slot


__all__ = ["CaptureCounterMap"]
