"""Terminal user interface for VoiceScribe."""

from .conversation_view import render_transcript, render_record, render_history, SPEAKER_PALETTE
from .recorder_screen import RecorderSession, RecorderScreen

__all__ = [
    "render_transcript",
    "render_record",
    "render_history",
    "SPEAKER_PALETTE",
    "RecorderSession",
    "RecorderScreen",
]
