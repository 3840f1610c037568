"""Microphone capture controller with a recording state machine.

States: IDLE -> TESTING -> RECORDING -> CAPTURED -> IDLE. At most one input
device is open at a time. TESTING and RECORDING share the same device, and
every transition out of them goes through ``_release_device``.
"""

import io
import wave
import logging
import threading
from typing import Optional, List, Callable
from pubsub import pub

from ..errors import CapturePermissionError, CaptureStateError
from ..models.audio import (
    RecordingState,
    CaptureConstraints,
    CapturedAudio,
    AudioStats,
)

logger = logging.getLogger(__name__)

LEVEL_TOPIC = "audio.level"
CAPTURE_MIME_TYPE = "audio/wav"

DeviceFactory = Callable[[int, int, int, CaptureConstraints], object]


def _default_device_factory(sample_rate: int, channels: int, chunk_size: int,
                            constraints: CaptureConstraints):
    # Imported lazily so the controller can run against other devices without PortAudio
    from .device import open_default_device
    return open_default_device(sample_rate, channels, chunk_size, constraints)


class CaptureController:
    """Owns the microphone lifecycle and the recording state machine."""

    def __init__(
        self,
        device_factory: Optional[DeviceFactory] = None,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        channels: int = 1,
        fragment_seconds: float = 1.0,
        tick_seconds: float = 1.0,
        level_topic: str = LEVEL_TOPIC,
        constraints: Optional[CaptureConstraints] = None,
    ):
        """Initialize capture controller.

        Args:
            device_factory: Callable opening an input device; defaults to PortAudio
            sample_rate: Audio sample rate in Hz
            chunk_size: Frames read per block
            channels: Number of audio channels
            fragment_seconds: Buffering cadence while recording
            tick_seconds: Interval of the elapsed-time counter
            level_topic: Pub/sub topic that receives every block read
            constraints: Processing requested from the input device
        """
        self.device_factory = device_factory or _default_device_factory
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.tick_seconds = tick_seconds
        self.level_topic = level_topic
        self.constraints = constraints or CaptureConstraints()
        self.fragment_bytes = int(sample_rate * fragment_seconds) * channels * 2  # 16-bit

        self.lock = threading.RLock()
        self._state = RecordingState.IDLE
        self._device = None
        self.chunks: List[bytes] = []
        self._pending = bytearray()
        self.elapsed_seconds = 0
        self.total_blocks = 0
        self.captured: Optional[CapturedAudio] = None
        self.last_error: Optional[Exception] = None

        self._reader_thread: Optional[threading.Thread] = None
        self._reader_stop = threading.Event()
        self._ticker_thread: Optional[threading.Thread] = None
        self._ticker_stop = threading.Event()

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def device_open(self) -> bool:
        return self._device is not None

    @property
    def device(self):
        """The open input device, or None."""
        return self._device

    # Transitions

    def start_test(self) -> None:
        """IDLE -> TESTING: open the microphone without recording."""
        with self.lock:
            if self._state != RecordingState.IDLE:
                raise CaptureStateError(f"Cannot start a microphone test while {self._state.value}")
            self._acquire_device()
            self._state = RecordingState.TESTING
        logger.info("Microphone test started")

    def stop_test(self) -> None:
        """TESTING -> IDLE: close the microphone."""
        with self.lock:
            if self._state != RecordingState.TESTING:
                raise CaptureStateError(f"No microphone test in progress ({self._state.value})")
            self._state = RecordingState.IDLE
        self._release_device()
        logger.info("Microphone test stopped")

    def start_recording(self) -> None:
        """IDLE or TESTING -> RECORDING, reusing an already open device."""
        with self.lock:
            if self._state not in (RecordingState.IDLE, RecordingState.TESTING):
                raise CaptureStateError(f"Cannot start recording while {self._state.value}")
            if self._device is None:
                self._acquire_device()
            else:
                logger.debug("Reusing the device opened for the microphone test")

            self.chunks = []
            self._pending = bytearray()
            self.elapsed_seconds = 0
            self.captured = None
            self._state = RecordingState.RECORDING

        self._start_ticker()
        logger.info("Recording started")

    def stop_recording(self) -> CapturedAudio:
        """RECORDING -> CAPTURED: assemble the fragments and release the device.

        Returns:
            The assembled clip
        """
        with self.lock:
            if self._state != RecordingState.RECORDING:
                raise CaptureStateError(f"Not recording ({self._state.value})")
            # Leaving RECORDING under the lock stops the reader from buffering
            self._state = RecordingState.CAPTURED
            if self._pending:
                self.chunks.append(bytes(self._pending))
                self._pending = bytearray()

        self._stop_ticker()
        self._release_device()

        with self.lock:
            self.captured = self._assemble(self.chunks)
        logger.info(f"Recording stopped: {len(self.chunks)} fragments, "
                    f"{self.captured.duration_seconds:.1f}s, {self.captured.size_bytes} bytes")
        return self.captured

    def discard(self) -> None:
        """CAPTURED -> IDLE: drop the clip and reset the counter."""
        with self.lock:
            if self._state != RecordingState.CAPTURED:
                raise CaptureStateError(f"Nothing to discard ({self._state.value})")
            self._reset()
        logger.info("Recording discarded")

    def mark_submitted(self) -> None:
        """CAPTURED -> IDLE after the clip was transcribed."""
        with self.lock:
            if self._state != RecordingState.CAPTURED:
                raise CaptureStateError(f"Nothing was captured ({self._state.value})")
            self._reset()

    def shutdown(self) -> None:
        """Release everything regardless of state."""
        self._stop_ticker()
        self._release_device()
        with self.lock:
            self._reset()

    def get_recording_stats(self) -> AudioStats:
        with self.lock:
            return AudioStats(
                state=self._state,
                elapsed_seconds=self.elapsed_seconds,
                fragment_count=len(self.chunks),
                sample_rate=self.sample_rate,
                chunk_size=self.chunk_size,
                total_blocks=self.total_blocks,
            )

    # Device lifecycle

    def _acquire_device(self) -> None:
        """Open the input device and start the reader. Caller holds the lock."""
        try:
            device = self.device_factory(self.sample_rate, self.channels, self.chunk_size, self.constraints)
        except CapturePermissionError:
            raise
        except OSError as e:
            logger.error(f"Microphone unavailable: {e}")
            raise CapturePermissionError(
                "Could not access the microphone. Make sure microphone permission is granted."
            ) from e

        self._device = device
        self.last_error = None
        self._reader_stop.clear()
        self._reader_thread = threading.Thread(target=self._read_loop, args=(device,), daemon=True)
        self._reader_thread.name = "AudioCaptureThread"
        self._reader_thread.start()

    def _release_device(self) -> None:
        """Stop the reader and close the device exactly once."""
        with self.lock:
            device = self._device
            self._device = None
            reader = self._reader_thread
            self._reader_thread = None
        if device is None:
            return

        self._reader_stop.set()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=2.0)
            if reader.is_alive():
                logger.warning("Audio reader thread did not stop cleanly")
        try:
            device.close()
        except Exception as e:
            logger.error(f"Error closing audio device: {e}")

    def _read_loop(self, device) -> None:
        """Read blocks while the device is open; buffer them while recording."""
        try:
            while not self._reader_stop.is_set():
                block = device.read(self.chunk_size)
                if not block:
                    continue
                with self.lock:
                    if self._reader_stop.is_set():
                        break
                    self.total_blocks += 1
                    if self._state == RecordingState.RECORDING:
                        self._buffer_block(block)
                pub.sendMessage(self.level_topic, block=block)
        except Exception as e:
            self.last_error = e
            logger.error(f"Audio capture error: {e}")

    def _buffer_block(self, block: bytes) -> None:
        self._pending.extend(block)
        while len(self._pending) >= self.fragment_bytes:
            self.chunks.append(bytes(self._pending[:self.fragment_bytes]))
            del self._pending[:self.fragment_bytes]

    # Elapsed-time counter

    def _start_ticker(self) -> None:
        self._ticker_stop.clear()
        self._ticker_thread = threading.Thread(target=self._tick_loop, daemon=True)
        self._ticker_thread.name = "RecordingTimerThread"
        self._ticker_thread.start()

    def _stop_ticker(self) -> None:
        self._ticker_stop.set()
        if self._ticker_thread is not None:
            self._ticker_thread.join(timeout=2.0)
            self._ticker_thread = None

    def _tick_loop(self) -> None:
        while not self._ticker_stop.wait(self.tick_seconds):
            with self.lock:
                if self._state != RecordingState.RECORDING:
                    break
                self.elapsed_seconds += 1

    # Helpers

    def _reset(self) -> None:
        self._state = RecordingState.IDLE
        self.captured = None
        self.chunks = []
        self._pending = bytearray()
        self.elapsed_seconds = 0

    def _assemble(self, chunks: List[bytes]) -> CapturedAudio:
        pcm = b''.join(chunks)
        buffer = io.BytesIO()
        with wave.open(buffer, 'wb') as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(2)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)
        duration = len(pcm) / float(self.sample_rate * self.channels * 2)
        return CapturedAudio(
            data=buffer.getvalue(),
            mime_type=CAPTURE_MIME_TYPE,
            duration_seconds=duration,
            fragment_count=len(chunks),
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
