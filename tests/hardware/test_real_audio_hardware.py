"""Real hardware tests for microphone capture.

These tests require an actual microphone and verify that the capture
controller produces a valid WAV clip from it.

Run with: pytest tests/hardware/ -v -s -m hardware
"""

import io
import time
import wave

import pytest

from voicescribe.audio.capture import CaptureController
from voicescribe.models.audio import RecordingState


@pytest.mark.hardware
class TestRealAudioHardware:
    """Tests that require real audio hardware to run."""

    def test_real_microphone_recording_5s(self):
        """Record five seconds after a short microphone test, reusing the test device."""
        print("\n" + "=" * 60)
        print("HARDWARE TEST: 5-second microphone recording")
        print("=" * 60)

        controller = CaptureController(sample_rate=16000, chunk_size=1024, channels=1)
        try:
            controller.start_test()
            time.sleep(1.0)
            test_device = controller.device

            controller.start_recording()
            assert controller.device is test_device
            time.sleep(5.0)
            captured = controller.stop_recording()
        finally:
            controller.shutdown()

        print(f"Captured {captured.size_bytes} bytes in {captured.fragment_count} fragments "
              f"({captured.duration_seconds:.2f}s)")

        assert controller.state == RecordingState.CAPTURED
        assert not controller.device_open
        assert captured.fragment_count >= 4
        with wave.open(io.BytesIO(captured.data), 'rb') as wf:
            assert wf.getframerate() == 16000
            duration = wf.getnframes() / wf.getframerate()
        assert 4.0 <= duration <= 6.5
