"""Transcription module for VoiceScribe."""

from .base import AbstractSpeechToTextBackend, AudioUpload
from .whisper_backend import WhisperBackend
from .chatgpt_labeling_engine import ChatGPTLabelingEngine, EngineReply
from .speaker_labeler import SpeakerLabeler, LabelingEngine, speaker_labels
from .client import TranscriptionClient
from . import conversation

__all__ = [
    "AbstractSpeechToTextBackend",
    "AudioUpload",
    "WhisperBackend",
    "ChatGPTLabelingEngine",
    "EngineReply",
    "SpeakerLabeler",
    "LabelingEngine",
    "speaker_labels",
    "TranscriptionClient",
    "conversation",
]
