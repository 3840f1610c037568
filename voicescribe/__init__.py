"""VoiceScribe - voice recording with speech-to-text transcription and speaker labeling."""

__version__ = "0.1.0"
