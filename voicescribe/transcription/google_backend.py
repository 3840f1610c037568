"""Google Speech-to-Text transcription backend."""

import asyncio
import time
import logging
from typing import Optional

from .base import AbstractSpeechToTextBackend, AudioUpload
from ..errors import UpstreamFailure
from ..models.transcription import SpeechTranscript

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

ENCODINGS = {
    "audio/wav": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/x-wav": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/wave": speech.RecognitionConfig.AudioEncoding.LINEAR16,
    "audio/webm": speech.RecognitionConfig.AudioEncoding.WEBM_OPUS,
    "audio/ogg": speech.RecognitionConfig.AudioEncoding.OGG_OPUS,
    "audio/flac": speech.RecognitionConfig.AudioEncoding.FLAC,
    "audio/mpeg": speech.RecognitionConfig.AudioEncoding.MP3,
    "audio/mp3": speech.RecognitionConfig.AudioEncoding.MP3,
}


class GoogleSpeechBackend(AbstractSpeechToTextBackend):
    """Google Speech-to-Text API backend for transcription."""

    service_name = "Google Speech-to-Text"

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 timeout: float = 120.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            language: Language code (e.g., 'en-US', 'es-ES')
            use_enhanced: Whether to use enhanced model (costs more but better quality)
            enable_automatic_punctuation: Enable automatic punctuation
            timeout: Per-request timeout in seconds
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        if not self.credentials_path:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.timeout = timeout
        self.client = None

    def initialize(self) -> bool:
        """Create the Speech client from the service account file."""
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        self.client = speech.SpeechClient(credentials=credentials)
        logger.info(f"Using Google Cloud project: {credentials.project_id}")
        return True

    def build_config(self, content_type: str) -> speech.RecognitionConfig:
        mime = content_type.split(';')[0].strip().lower()
        encoding = ENCODINGS.get(mime, speech.RecognitionConfig.AudioEncoding.ENCODING_UNSPECIFIED)
        return speech.RecognitionConfig(
            encoding=encoding,
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
        )

    async def transcribe(self, upload: AudioUpload) -> SpeechTranscript:
        if self.client is None:
            self.initialize()
        # The Speech client is blocking
        return await asyncio.to_thread(self._recognize, upload)

    def _recognize(self, upload: AudioUpload) -> SpeechTranscript:
        start_time = time.time()
        config = self.build_config(upload.content_type)
        audio = speech.RecognitionAudio(content=upload.data)

        logger.debug(f"Upload {upload.filename}: {upload.size_bytes} bytes; Language: {self.language}; "
                     f"Enhanced model: {self.use_enhanced}")
        try:
            response = self.client.recognize(config=config, audio=audio, timeout=self.timeout)
        except gax_exceptions.DeadlineExceeded as e:
            logger.error("Google STT recognize deadline exceeded for %s", upload.filename)
            raise UpstreamFailure(f"Google Speech recognize timeout ({upload.filename}): {e}") from e
        except gax_exceptions.ServiceUnavailable as e:
            logger.error("Google STT service unavailable for %s", upload.filename)
            raise UpstreamFailure(f"Google Speech service unavailable ({upload.filename}): {e}") from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error("Google STT API call error for %s: %s", upload.filename, e)
            raise UpstreamFailure(f"Google Speech API error ({upload.filename}): {e}") from e

        transcripts = [r.alternatives[0].transcript.strip() for r in response.results if r.alternatives]
        duration = None
        if response.results:
            end_time = response.results[-1].result_end_time
            duration = end_time.total_seconds() if end_time is not None else None
        if duration is None and response.total_billed_time:
            duration = response.total_billed_time.total_seconds()

        logger.info(f"Google transcription done in {time.time() - start_time:.2f}s "
                    f"({len(transcripts)} results, duration: {duration}s)")
        return SpeechTranscript(
            text=" ".join(t for t in transcripts if t),
            duration_seconds=duration,
            language=self.language,
            service=self.service_name,
        )
