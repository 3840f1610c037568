"""HTTP client the recorder uses to talk to the transcription server."""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from .base import extension_for
from ..errors import TranscriptionRequestError
from ..models.api import HistoryResponse, SubmitOptions, TranscriptionResponse
from ..models.audio import CapturedAudio
from ..models.transcription import HistoryPage, TranscriptionRecord

logger = logging.getLogger(__name__)

TRANSCRIBE_PATH = "/transcribe"
DIARIZE_PATH = "/diarize"
TRANSCRIPTIONS_PATH = "/transcriptions"
HEALTH_PATH = "/health"


def upload_filename(mime_type: str) -> str:
    """Unique name for an uploaded clip, e.g. recording-1700000000000-3f2a9c1d.wav."""
    return f"recording-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{extension_for(mime_type)}"


class TranscriptionClient:
    """Uploads captured clips and manages the server-side history."""

    def __init__(self, base_url: str, timeout: float = 300.0):
        """Initialize transcription client.

        Args:
            base_url: Server root, e.g. http://localhost:3000
            timeout: Total timeout per request in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def submit(self, captured: CapturedAudio, options: Optional[SubmitOptions] = None) -> TranscriptionRecord:
        """Upload a clip and return the resulting record.

        Args:
            captured: Clip produced by the capture controller
            options: Diarization options; plain transcription when omitted

        Returns:
            Normalized TranscriptionRecord

        Raises:
            TranscriptionRequestError: On HTTP failure, malformed body, or network failure
        """
        options = options or SubmitOptions()
        form = aiohttp.FormData()
        form.add_field("audio", captured.data,
                       filename=upload_filename(captured.mime_type),
                       content_type=captured.mime_type)

        path = TRANSCRIBE_PATH
        if options.diarize:
            path = DIARIZE_PATH
            form.add_field("speakerCount", str(options.expected_speaker_count))
            if options.speaker_names:
                form.add_field("speakerNames", json.dumps(options.speaker_names))

        logger.info(f"Submitting {captured.size_bytes} bytes to {path}")
        body = await self._request("POST", path, data=form)
        try:
            response = TranscriptionResponse.model_validate(body)
        except ValidationError as e:
            logger.error(f"Invalid transcription response: {e}")
            raise TranscriptionRequestError("Invalid response from transcription service") from e

        record = response.transcription.to_record()
        logger.info(f"Transcription {record.id} received ({len(record.text)} chars)")
        return record

    async def list_transcriptions(self) -> HistoryPage:
        body = await self._request("GET", TRANSCRIPTIONS_PATH)
        try:
            return HistoryResponse.model_validate(body).to_page()
        except ValidationError as e:
            raise TranscriptionRequestError("Invalid response from transcription service") from e

    async def delete_transcription(self, record_id: str) -> str:
        body = await self._request("DELETE", f"{TRANSCRIPTIONS_PATH}/{record_id}")
        return str(body.get("message", ""))

    async def clear_transcriptions(self) -> int:
        body = await self._request("DELETE", f"{TRANSCRIPTIONS_PATH}/clear")
        try:
            return int(body["deletedCount"])
        except (KeyError, TypeError, ValueError) as e:
            raise TranscriptionRequestError("Invalid response from transcription service") from e

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", HEALTH_PATH)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, **kwargs) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None

                    if response.status >= 400:
                        message = body.get("error") if isinstance(body, dict) else None
                        raise TranscriptionRequestError(
                            message or f"Request failed with status {response.status}"
                        )
                    if not isinstance(body, dict):
                        raise TranscriptionRequestError("Invalid response from transcription service")
                    return body
        except aiohttp.ClientError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise TranscriptionRequestError(f"Could not reach the transcription server: {e}") from e
        except asyncio.TimeoutError as e:
            raise TranscriptionRequestError("The transcription server did not answer in time") from e
