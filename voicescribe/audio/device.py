"""Microphone input devices."""

import logging
from typing import Optional, Protocol

import numpy as np
import pyaudio
from scipy import signal

from ..errors import CapturePermissionError
from ..models.audio import CaptureConstraints

logger = logging.getLogger(__name__)


class InputDevice(Protocol):
    """An open audio input the capture controller reads from."""

    def read(self, frames: int) -> bytes:
        ...

    def close(self) -> None:
        ...


class NoiseSuppressor:
    """High-pass filter that removes rumble and hum below the voice band."""

    def __init__(self, sample_rate: int, cutoff_hz: float = 80.0, order: int = 4):
        self.sos = signal.butter(order, cutoff_hz, btype='highpass', fs=sample_rate, output='sos')
        self.state = np.zeros((self.sos.shape[0], 2))

    def process(self, block: bytes) -> bytes:
        samples = np.frombuffer(block, dtype=np.int16).astype(np.float64)
        if samples.size == 0:
            return block
        filtered, self.state = signal.sosfilt(self.sos, samples, zi=self.state)
        return np.clip(filtered, -32768, 32767).astype(np.int16).tobytes()


class PyAudioInputDevice:
    """16-bit PCM microphone stream opened through PortAudio."""

    def __init__(self,
                 sample_rate: int = 16000,
                 channels: int = 1,
                 chunk_size: int = 1024,
                 constraints: Optional[CaptureConstraints] = None,
                 device_index: Optional[int] = None):
        """Open the default (or given) input device.

        Args:
            sample_rate: Audio sample rate in Hz
            channels: Number of audio channels
            chunk_size: Frames per buffer
            constraints: Requested echo cancellation / noise suppression
            device_index: PortAudio device index, None for the system default

        Raises:
            CapturePermissionError: If the device cannot be opened
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.constraints = constraints or CaptureConstraints()
        self.closed = False

        if self.constraints.echo_cancellation:
            logger.info("Echo cancellation requested; PortAudio relies on the OS audio stack for it")
        self.noise_suppressor = (
            NoiseSuppressor(sample_rate) if self.constraints.noise_suppression and channels == 1 else None
        )

        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            self.stream = self.pyaudio_instance.open(
                format=pyaudio.paInt16,
                channels=channels,
                rate=sample_rate,
                input=True,
                input_device_index=device_index,
                frames_per_buffer=chunk_size,
            )
        except (OSError, ValueError) as e:
            self.pyaudio_instance.terminate()
            logger.error(f"Could not open microphone: {e}")
            raise CapturePermissionError(
                "Could not access the microphone. Check that a microphone is connected "
                "and that this application has permission to use it."
            ) from e

        logger.info(f"Audio stream opened: {sample_rate}Hz, {chunk_size} samples/chunk")

    def read(self, frames: int) -> bytes:
        block = self.stream.read(frames, exception_on_overflow=False)
        if self.noise_suppressor is not None:
            block = self.noise_suppressor.process(block)
        return block

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.stream.stop_stream()
            self.stream.close()
        finally:
            self.pyaudio_instance.terminate()
        logger.info("Audio stream closed")


def open_default_device(sample_rate: int, channels: int, chunk_size: int,
                        constraints: CaptureConstraints) -> PyAudioInputDevice:
    return PyAudioInputDevice(
        sample_rate=sample_rate,
        channels=channels,
        chunk_size=chunk_size,
        constraints=constraints,
    )
