"""Unit tests for CaptureCounterMap."""

import pytest

from rig_calibration.capture.counters import CaptureCounterMap
from rig_calibration.core.errors import CaptureRejectedError


class TestCaptureCounterMap:
    def test_starts_at_zero(self):
        counters = CaptureCounterMap()
        assert counters.snapshot() == {0: 0, 1: 0, 2: 0}
        assert counters.target == 15

    def test_increment_stops_at_target(self):
        counters = CaptureCounterMap(target=3)
        assert [counters.increment(1) for _ in range(3)] == [1, 2, 3]
        assert counters.is_complete(1)
        assert counters.remaining(1) == 0

        with pytest.raises(CaptureRejectedError):
            counters.increment(1)
        assert counters.get(1) == 3

    def test_reset_only_affects_one_slot(self):
        counters = CaptureCounterMap()
        counters.increment(0)
        counters.increment(2)

        counters.reset(0)

        assert counters.snapshot() == {0: 0, 1: 0, 2: 1}

    def test_unknown_slot(self):
        counters = CaptureCounterMap()
        assert 3 not in counters
        with pytest.raises(ValueError):
            counters.get(3)
        with pytest.raises(ValueError):
            counters.increment(-1)

    @pytest.mark.parametrize("kwargs", [{"target": 0}, {"slots": ()}])
    def test_invalid_construction(self, kwargs):
        with pytest.raises(ValueError):
            CaptureCounterMap(**kwargs)
