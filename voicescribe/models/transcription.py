"""Transcription-related data models."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List


def billed_minutes(seconds: Optional[float]) -> int:
    """Whole minutes billed for a clip; an unknown or zero duration bills one minute."""
    if not seconds or seconds <= 0:
        return 1
    return math.ceil(seconds / 60)


@dataclass
class TranscriptionRecord:
    """Persisted result of one transcription or diarization request."""
    id: str
    text: str
    created_at: datetime
    audio_url: str = ""
    original_text: Optional[str] = None  # Unlabeled transcript, diarized results only
    duration_seconds: float = 0.0
    tokens_expended: int = 0
    usd_expended: float = 0.0
    speaker_count: Optional[int] = None

    @property
    def duration_minutes(self) -> int:
        return billed_minutes(self.duration_seconds)


@dataclass
class ConversationTurn:
    """One parsed line of a transcript."""
    content: str
    speaker_label: Optional[str] = None

    @property
    def is_continuation(self) -> bool:
        return self.speaker_label is None


@dataclass
class SpeechTranscript:
    """Output of a speech-to-text backend."""
    text: str
    duration_seconds: Optional[float] = None
    language: Optional[str] = None
    service: str = ""


@dataclass
class LabelingResult:
    """Output of the speaker labeling step."""
    text: str
    tokens_used: int = 0
    labels: List[str] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class UsageCost:
    """Billed usage for one request."""
    duration_minutes: int
    base_cost: float
    labeling_cost: float
    usd_expended: float


@dataclass
class HistoryPage:
    """All records, newest first, with aggregate usage."""
    records: List[TranscriptionRecord]
    total_tokens: int
    total_cost: float

    @property
    def total(self) -> int:
        return len(self.records)
