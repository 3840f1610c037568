"""Data models for the VoiceScribe application."""

from .audio import (
    RecordingState,
    CaptureConstraints,
    CapturedAudio,
    AudioStats,
    LevelBand,
    LevelFrame,
)
from .transcription import (
    TranscriptionRecord,
    ConversationTurn,
    SpeechTranscript,
    LabelingResult,
    UsageCost,
    HistoryPage,
    billed_minutes,
)
from .api import (
    TranscriptionPayload,
    TranscriptionResponse,
    HistoryResponse,
    SubmitOptions,
)

__all__ = [
    "RecordingState",
    "CaptureConstraints",
    "CapturedAudio",
    "AudioStats",
    "LevelBand",
    "LevelFrame",
    "TranscriptionRecord",
    "ConversationTurn",
    "SpeechTranscript",
    "LabelingResult",
    "UsageCost",
    "HistoryPage",
    "billed_minutes",
    # Wire schemas
    "TranscriptionPayload",
    "TranscriptionResponse",
    "HistoryResponse",
    "SubmitOptions",
]
