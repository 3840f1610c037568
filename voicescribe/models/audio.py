"""Audio-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class RecordingState(Enum):
    """States of the capture controller."""
    IDLE = "idle"
    TESTING = "testing"
    RECORDING = "recording"
    CAPTURED = "captured"


@dataclass
class CaptureConstraints:
    """Processing requested from the input device."""
    echo_cancellation: bool = True
    noise_suppression: bool = True


@dataclass
class CapturedAudio:
    """A finished recording, assembled from its fragments."""
    data: bytes
    mime_type: str
    duration_seconds: float
    fragment_count: int
    sample_rate: int = 16000
    channels: int = 1

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class AudioStats:
    """Capture statistics for status displays."""
    state: RecordingState
    elapsed_seconds: int
    fragment_count: int
    sample_rate: int
    chunk_size: int
    total_blocks: int


class LevelBand(Enum):
    """Visual feedback bands for a normalized magnitude."""
    VERY_LOW = "very_low"
    GOOD = "good"
    HIGH = "high"
    CLIPPING = "clipping"


@dataclass
class LevelFrame:
    """One refresh of the level visualizer."""
    magnitudes: List[float]  # normalized 0.0 - 1.0, one per frequency bin
    bands: List[LevelBand] = field(default_factory=list)
    volume: float = 0.0      # mean magnitude, 0.0 - 1.0
    volume_band: LevelBand = LevelBand.VERY_LOW

    @property
    def volume_percent(self) -> int:
        return int(round(self.volume * 100))
