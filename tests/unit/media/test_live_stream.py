"""Unit tests for LiveStream and StreamConstraints."""

from rig_calibration.media.base import TRACK_ENDED, LiveStream, StreamConstraints
from tests.infrastructure.mocks.camera_mocks import FakeTrack


class TestLiveStream:
    def test_active_until_stopped(self):
        track = FakeTrack("camA")
        stream = LiveStream("camA", [track])

        assert stream.active
        stream.stop()

        assert not stream.active
        assert track.ready_state == TRACK_ENDED

    def test_stop_is_idempotent(self):
        track = FakeTrack("camA")
        stream = LiveStream("camA", [track])

        stream.stop()
        stream.stop()

        assert track.stop_calls == 1

    def test_video_tracks_filtered_by_kind(self):
        video = FakeTrack("camA")
        audio = FakeTrack("camA")
        audio.kind = "audio"
        stream = LiveStream("camA", [video, audio])

        assert stream.get_video_tracks() == [video]
        assert len(stream.get_tracks()) == 2


class TestStreamConstraints:
    def test_video_constraints_never_request_audio(self):
        constraints = StreamConstraints.video("camA", (1280, 720), 30)

        assert constraints.device_id == "camA"
        assert (constraints.width, constraints.height, constraints.fps) == (1280, 720, 30)
        assert constraints.audio is False
