"""Unit tests for the CaptureController state machine."""

import io
import wave

import pytest
from pubsub import pub

from voicescribe.audio.capture import CaptureController, CAPTURE_MIME_TYPE
from voicescribe.errors import CapturePermissionError, CaptureStateError
from voicescribe.models.audio import RecordingState


def make_controller(factory, topic="test.capture.level"):
    # 1 kHz keeps one-second fragments small: 2000 bytes, 10 blocks of 100 frames
    return CaptureController(
        device_factory=factory,
        sample_rate=1000,
        chunk_size=100,
        channels=1,
        tick_seconds=0.01,
        level_topic=topic,
    )


@pytest.mark.unit
class TestCaptureController:
    """Test cases for CaptureController."""

    @pytest.fixture
    def controller(self, device_factory):
        controller = make_controller(device_factory)
        yield controller
        controller.shutdown()

    def test_initial_state(self, controller):
        """Controller starts idle without a device."""
        assert controller.state == RecordingState.IDLE
        assert not controller.device_open
        assert controller.chunks == []
        assert controller.elapsed_seconds == 0

    def test_start_and_stop_test(self, controller, device_factory):
        """Testing opens the device and stopping the test releases it."""
        controller.start_test()

        assert controller.state == RecordingState.TESTING
        assert controller.device_open
        assert len(device_factory.devices) == 1

        controller.stop_test()

        assert controller.state == RecordingState.IDLE
        assert not controller.device_open
        assert device_factory.devices[0].close_calls == 1

    def test_recording_reuses_test_device(self, controller, device_factory, wait_for):
        """Starting a recording while testing must not open a second device."""
        controller.start_test()
        test_device = controller.device

        controller.start_recording()

        assert controller.state == RecordingState.RECORDING
        assert controller.device is test_device
        assert len(device_factory.devices) == 1
        assert test_device.close_calls == 0

        assert wait_for(lambda: len(controller.chunks) >= 2)
        controller.stop_recording()
        assert test_device.close_calls == 1

    def test_recording_from_idle_opens_device(self, controller, device_factory):
        """Recording from idle acquires exactly one device."""
        controller.start_recording()

        assert controller.device_open
        assert len(device_factory.devices) == 1

    def test_stop_recording_releases_device_once(self, controller, device_factory, wait_for):
        """The device is closed exactly once per recording and no chunks follow the stop."""
        controller.start_recording()
        assert wait_for(lambda: len(controller.chunks) >= 3)

        captured = controller.stop_recording()
        chunk_count = len(controller.chunks)
        device = device_factory.devices[0]

        assert controller.state == RecordingState.CAPTURED
        assert not controller.device_open
        assert device.close_calls == 1
        assert device.reads_after_close == 0
        assert captured.fragment_count == chunk_count

        # Further releases are no-ops
        controller.shutdown()
        assert device.close_calls == 1
        assert device.reads_after_close == 0

    def test_fragments_are_one_second(self, controller, wait_for):
        """Fragments hold one second of audio; a partial tail is flushed on stop."""
        controller.start_recording()
        assert wait_for(lambda: len(controller.chunks) >= 2)
        controller.stop_recording()

        full_fragments = controller.chunks[:-1]
        assert all(len(fragment) == 2000 for fragment in full_fragments)
        assert 0 < len(controller.chunks[-1]) <= 2000

    def test_captured_audio_is_wav(self, controller, wait_for):
        """The assembled clip is a WAV with all recorded frames."""
        controller.start_recording()
        assert wait_for(lambda: len(controller.chunks) >= 2)
        captured = controller.stop_recording()

        assert captured.mime_type == CAPTURE_MIME_TYPE
        with wave.open(io.BytesIO(captured.data), 'rb') as wf:
            assert wf.getframerate() == 1000
            assert wf.getnchannels() == 1
            assert wf.getsampwidth() == 2
            frames = wf.getnframes()
        assert frames == sum(len(c) for c in controller.chunks) // 2
        assert captured.duration_seconds == pytest.approx(frames / 1000)

    def test_elapsed_counter_ticks_and_resets(self, controller, wait_for):
        """Elapsed time advances while recording and resets on discard."""
        controller.start_recording()
        assert wait_for(lambda: controller.elapsed_seconds >= 2)
        controller.stop_recording()
        stopped_at = controller.elapsed_seconds

        assert stopped_at >= 2
        controller.discard()

        assert controller.state == RecordingState.IDLE
        assert controller.elapsed_seconds == 0
        assert controller.captured is None
        assert controller.chunks == []

    def test_new_recording_clears_previous_chunks(self, controller, wait_for):
        """Chunks are cleared at the start of each recording."""
        controller.start_recording()
        assert wait_for(lambda: len(controller.chunks) >= 3)
        controller.stop_recording()
        controller.mark_submitted()

        controller.start_recording()

        assert len(controller.chunks) < 3
        assert controller.elapsed_seconds == 0

    def test_permission_error_stays_idle(self, failing_device_factory):
        """A device that cannot be opened leaves the controller idle."""
        controller = make_controller(failing_device_factory)

        with pytest.raises(CapturePermissionError):
            controller.start_test()
        assert controller.state == RecordingState.IDLE
        assert not controller.device_open

        with pytest.raises(CapturePermissionError):
            controller.start_recording()
        assert controller.state == RecordingState.IDLE

    def test_invalid_transitions(self, controller):
        """Operations outside their source state raise CaptureStateError."""
        with pytest.raises(CaptureStateError):
            controller.stop_recording()
        with pytest.raises(CaptureStateError):
            controller.discard()
        with pytest.raises(CaptureStateError):
            controller.stop_test()

        controller.start_recording()
        with pytest.raises(CaptureStateError):
            controller.start_test()
        with pytest.raises(CaptureStateError):
            controller.start_recording()

    def test_captured_clip_survives_failed_submission(self, controller, wait_for):
        """Without mark_submitted the clip stays captured for a retry."""
        controller.start_recording()
        assert wait_for(lambda: len(controller.chunks) >= 1)
        captured = controller.stop_recording()

        assert controller.state == RecordingState.CAPTURED
        assert controller.captured is captured

        controller.mark_submitted()
        assert controller.state == RecordingState.IDLE
        assert controller.captured is None

    def test_blocks_published_on_level_topic(self, device_factory, wait_for):
        """Every block read is published for the visualizer, also while testing."""
        received = []

        def listener(block):
            received.append(block)

        topic = "test.capture.publish"
        pub.subscribe(listener, topic)
        controller = make_controller(device_factory, topic=topic)
        try:
            controller.start_test()
            assert wait_for(lambda: len(received) >= 3)
            assert controller.chunks == []
            assert all(len(block) == 200 for block in received)
        finally:
            controller.shutdown()
            pub.unsubscribe(listener, topic)

    def test_stats(self, controller, wait_for):
        controller.start_recording()
        assert wait_for(lambda: controller.total_blocks >= 5)

        stats = controller.get_recording_stats()

        assert stats.state == RecordingState.RECORDING
        assert stats.sample_rate == 1000
        assert stats.chunk_size == 100
        assert stats.total_blocks >= 5
