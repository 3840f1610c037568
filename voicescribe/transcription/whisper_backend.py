"""OpenAI Whisper speech-to-text backend."""

import asyncio
import logging
import time
from typing import Optional

import aiohttp

from .base import AbstractSpeechToTextBackend, AudioUpload
from ..errors import UpstreamFailure
from ..models.transcription import SpeechTranscript

logger = logging.getLogger(__name__)


class WhisperBackend(AbstractSpeechToTextBackend):
    """OpenAI audio transcription API backend."""

    service_name = "OpenAI Whisper"

    def __init__(self,
                 api_key: str,
                 model: str = "whisper-1",
                 language: Optional[str] = "en",
                 temperature: float = 0.2,
                 base_url: str = "https://api.openai.com/v1",
                 timeout: float = 120.0):
        """Initialize Whisper backend.

        Args:
            api_key: OpenAI API key
            model: Transcription model
            language: ISO-639-1 language hint, None to let the model detect it
            temperature: Sampling temperature
            base_url: API root
            timeout: Total timeout per request in seconds
        """
        super().__init__(language)
        if not api_key:
            raise ValueError("OpenAI API key is required for the Whisper backend")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.url = f"{base_url.rstrip('/')}/audio/transcriptions"

    async def transcribe(self, upload: AudioUpload) -> SpeechTranscript:
        start_time = time.time()
        form = aiohttp.FormData()
        form.add_field("file", upload.data, filename=upload.filename, content_type=upload.content_type)
        form.add_field("model", self.model)
        form.add_field("response_format", "verbose_json")
        form.add_field("temperature", str(self.temperature))
        if self.language:
            form.add_field("language", self.language)

        headers = {"Authorization": f"Bearer {self.api_key}"}

        logger.debug(f"Sending {upload.size_bytes} bytes ({upload.content_type}) to {self.service_name}")
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, headers=headers, data=form) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise UpstreamFailure(f"Whisper API error: {response.status} - {error_text}")
                    result = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpstreamFailure(f"Whisper API request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise UpstreamFailure(f"Whisper API request timed out after {self.timeout.total}s") from e
        except ValueError as e:
            raise UpstreamFailure(f"Whisper API returned invalid JSON: {e}") from e

        text = result.get("text") if isinstance(result, dict) else None
        if not isinstance(text, str):
            raise UpstreamFailure("Whisper API response has no text")

        try:
            duration = float(result["duration"]) if result.get("duration") is not None else None
        except (TypeError, ValueError) as e:
            raise UpstreamFailure(f"Whisper API response has an invalid duration: {e}") from e

        logger.info(f"Whisper transcription done in {time.time() - start_time:.2f}s "
                    f"(audio duration: {duration}s, {len(text)} chars)")
        return SpeechTranscript(
            text=text.strip(),
            duration_seconds=duration,
            language=result.get("language"),
            service=self.service_name,
        )
