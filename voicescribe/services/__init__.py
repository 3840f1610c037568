"""Services module for VoiceScribe."""

from .transcription_service import TranscriptionService, build_service, compute_usage

__all__ = [
    "TranscriptionService",
    "build_service",
    "compute_usage",
]
