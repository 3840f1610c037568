"""Abstract base classes for speech-to-text backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

from ..models.transcription import SpeechTranscript

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/flac": "flac",
}


def extension_for(content_type: str) -> str:
    """File extension for an audio MIME type, parameters such as codecs ignored."""
    mime = (content_type or "").split(";")[0].strip().lower()
    return AUDIO_EXTENSIONS.get(mime, "bin")


@dataclass
class AudioUpload:
    """An uploaded audio file as received by the server."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class AbstractSpeechToTextBackend(ABC):
    """Abstract base class for speech-to-text backends."""

    service_name = "unknown"

    def __init__(self, language: str = "en"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    async def transcribe(self, upload: AudioUpload) -> SpeechTranscript:
        """Transcribe an uploaded clip.

        Args:
            upload: Audio file with its declared MIME type

        Returns:
            SpeechTranscript with the full text and total spoken duration

        Raises:
            UpstreamFailure: If the external service fails or returns unusable output
        """
        pass

    async def close(self) -> None:
        """Clean up backend resources."""
        pass
