"""Transcription service: speech-to-text, speaker labeling, billing and persistence."""

import asyncio
import logging
import re
import time
from typing import List, Optional, Sequence

from ..config import VoiceScribeConfig
from ..errors import InvalidInput, ServiceUnavailable
from ..models.transcription import TranscriptionRecord, UsageCost, billed_minutes
from ..storage import BlobStore, HistoryStore, LocalBlobStore, VercelBlobStore
from ..transcription import (
    AbstractSpeechToTextBackend,
    AudioUpload,
    ChatGPTLabelingEngine,
    SpeakerLabeler,
    WhisperBackend,
    speaker_labels,
)
from ..transcription.base import extension_for
from ..transcription.conversation import count_labels_present

logger = logging.getLogger(__name__)

GENERATED_LABEL = re.compile(r"^\s*(speaker\s+\d+)\s*:", re.IGNORECASE | re.MULTILINE)


def compute_usage(spoken_seconds: Optional[float],
                  labeling_tokens: int,
                  per_minute_rate: float,
                  per_thousand_token_rate: float) -> UsageCost:
    """Estimate the cost of one request.

    Args:
        spoken_seconds: Duration reported by speech-to-text
        labeling_tokens: Tokens spent on speaker labeling, 0 for plain transcription
        per_minute_rate: USD per started minute of audio
        per_thousand_token_rate: USD per 1000 labeling tokens

    Returns:
        UsageCost with usd_expended rounded to 6 decimals
    """
    minutes = billed_minutes(spoken_seconds)
    base_cost = minutes * per_minute_rate
    labeling_cost = (labeling_tokens / 1000) * per_thousand_token_rate
    return UsageCost(
        duration_minutes=minutes,
        base_cost=base_cost,
        labeling_cost=labeling_cost,
        usd_expended=round(base_cost + labeling_cost, 6),
    )


def count_speakers(text: str, labels: Sequence[str], generated: bool) -> int:
    """Distinct speaker labels present in the final text.

    Configured labels count when they appear as ``<label>:``. With generated
    ``Speaker N`` labels, any other ``Speaker <n>:`` the model introduced also counts.
    """
    count = count_labels_present(text, labels)
    if generated:
        configured = {" ".join(label.lower().split()) for label in labels}
        extra = {" ".join(found.lower().split()) for found in GENERATED_LABEL.findall(text or "")}
        count += len(extra - configured)
    return count


def audio_object_name(prefix: str, content_type: str) -> str:
    """Object-storage name such as ``audio-1700000000000.wav``."""
    return f"{prefix}-{int(time.time() * 1000)}.{extension_for(content_type)}"


def validate_upload(upload: Optional[AudioUpload]) -> AudioUpload:
    """Reject a missing, empty or non-audio upload with InvalidInput."""
    if upload is None:
        raise InvalidInput("No audio file provided")
    if not (upload.content_type or "").lower().startswith("audio/"):
        raise InvalidInput("Invalid file type. Please upload an audio file.")
    if not upload.data:
        raise InvalidInput("Audio file is empty")
    return upload


class TranscriptionService:
    """Turns uploaded clips into persisted transcription records."""

    def __init__(self,
                 config: VoiceScribeConfig,
                 history: HistoryStore,
                 stt_backend: Optional[AbstractSpeechToTextBackend] = None,
                 labeler: Optional[SpeakerLabeler] = None,
                 blob_store: Optional[BlobStore] = None):
        """Initialize transcription service.

        Args:
            config: Application configuration (pricing rates)
            history: Store the records are persisted to
            stt_backend: Speech-to-text backend, None when not configured
            labeler: Speaker labeler, None when the language model is not configured
            blob_store: Object storage for the uploaded audio, None to skip storing it
        """
        self.config = config
        self.history = history
        self.stt_backend = stt_backend
        self.labeler = labeler
        self.blob_store = blob_store
        self.per_minute_rate = float(config.get('pricing.speech_to_text_per_minute', 0.006))
        self.per_thousand_token_rate = float(config.get('pricing.labeling_per_thousand_tokens', 0.03))

    @property
    def speech_to_text_available(self) -> bool:
        return self.stt_backend is not None

    @property
    def object_storage_available(self) -> bool:
        return self.blob_store is not None

    async def transcribe(self, upload: Optional[AudioUpload]) -> TranscriptionRecord:
        """Plain transcription of one clip.

        Raises:
            ServiceUnavailable: If speech-to-text is not configured
            InvalidInput: If the upload is missing or not audio
            UpstreamFailure: If speech-to-text fails
        """
        self._require(labeling=False)
        upload = validate_upload(upload)

        logger.info(f"Transcribing {upload.filename} ({upload.size_bytes} bytes, {upload.content_type})")
        transcript = await self.stt_backend.transcribe(upload)
        usage = compute_usage(transcript.duration_seconds, 0, self.per_minute_rate, self.per_thousand_token_rate)

        audio_url = await self._store_audio(upload, "audio")
        record = await asyncio.to_thread(
            self.history.create,
            text=transcript.text,
            audio_url=audio_url,
            duration_seconds=transcript.duration_seconds or 0.0,
            tokens_expended=0,
            usd_expended=usage.usd_expended,
        )
        logger.info(f"Transcription {record.id}: {usage.duration_minutes} min, ${usage.usd_expended:.6f}")
        return record

    async def diarize(self,
                      upload: Optional[AudioUpload],
                      speaker_count: int = 2,
                      speaker_names: Optional[List[str]] = None) -> TranscriptionRecord:
        """Transcription with speaker labels.

        Args:
            upload: Uploaded clip
            speaker_count: Expected number of speakers, used when no names are given
            speaker_names: Ordered display names to use as labels

        Raises:
            ServiceUnavailable: If speech-to-text or the language model is not configured
            InvalidInput: If the upload is missing or not audio, or speaker_count < 1
            UpstreamFailure: If speech-to-text fails
        """
        self._require(labeling=True)
        upload = validate_upload(upload)
        if speaker_count < 1:
            raise InvalidInput("speakerCount must be a positive integer")

        labels = speaker_labels(speaker_count, speaker_names)
        generated = not any(name and name.strip() for name in speaker_names or [])

        logger.info(f"Diarizing {upload.filename} ({upload.size_bytes} bytes) with labels {labels}")
        transcript = await self.stt_backend.transcribe(upload)
        labeled = await self.labeler.label(transcript.text, labels)
        usage = compute_usage(transcript.duration_seconds, labeled.tokens_used,
                              self.per_minute_rate, self.per_thousand_token_rate)

        audio_url = await self._store_audio(upload, "diarized-audio")
        record = await asyncio.to_thread(
            self.history.create,
            text=labeled.text,
            original_text=transcript.text,
            audio_url=audio_url,
            duration_seconds=transcript.duration_seconds or 0.0,
            tokens_expended=labeled.tokens_used,
            usd_expended=usage.usd_expended,
            speaker_count=count_speakers(labeled.text, labels, generated),
        )
        logger.info(f"Diarization {record.id}: {record.speaker_count} speakers, "
                    f"{labeled.tokens_used} tokens, ${usage.usd_expended:.6f}")
        return record

    async def close(self) -> None:
        if self.stt_backend is not None:
            await self.stt_backend.close()

    def _require(self, labeling: bool) -> None:
        if self.stt_backend is None:
            raise ServiceUnavailable("Speech-to-text service not configured")
        if labeling and self.labeler is None:
            raise ServiceUnavailable("Speaker labeling service not configured")

    async def _store_audio(self, upload: AudioUpload, prefix: str) -> str:
        """Upload the clip to object storage; empty URL when that is not possible."""
        if self.blob_store is None:
            logger.warning("No object storage configured, audio will not be kept")
            return ""
        try:
            return await self.blob_store.put(audio_object_name(prefix, upload.content_type),
                                             upload.data, upload.content_type)
        except Exception as e:
            logger.error(f"Error uploading audio, continuing without audioUrl: {e!r}")
            return ""


def create_speech_backend(config: VoiceScribeConfig) -> AbstractSpeechToTextBackend:
    """Speech-to-text backend selected by ``speech_to_text.backend``."""
    backend_name = config.get_stt_backend_name()
    if backend_name == 'google':
        # Only imported when selected
        from ..transcription.google_backend import GoogleSpeechBackend

        logger.info("Initializing Google Speech backend...")
        backend = GoogleSpeechBackend(
            credentials_path=config.get('google_cloud.credentials_path'),
            language=config.get('google_cloud.language', 'en-US'),
            use_enhanced=config.get('google_cloud.use_enhanced_model', True),
            enable_automatic_punctuation=config.get('google_cloud.enable_automatic_punctuation', True),
        )
        backend.initialize()
        return backend
    if backend_name == 'openai':
        return WhisperBackend(
            api_key=config.get_openai_api_key(),
            model=config.get('speech_to_text.model', 'whisper-1'),
            language=config.get('speech_to_text.language', 'en'),
            base_url=config.get('openai.base_url', 'https://api.openai.com/v1'),
            timeout=config.get('openai.timeout_seconds', 120.0),
        )
    raise ValueError(f"Unknown speech_to_text.backend: {backend_name!r}")


def create_blob_store(config: VoiceScribeConfig) -> BlobStore:
    """Object storage selected by ``storage.backend``."""
    backend_name = config.get('storage.backend', 'vercel')
    if backend_name == 'local':
        return LocalBlobStore(config.get_data_directory(), config.get_app_url())
    if backend_name == 'vercel':
        return VercelBlobStore(config.get('storage.blob_token'),
                               timeout=config.get('storage.timeout_seconds', 60.0))
    raise ValueError(f"Unknown storage.backend: {backend_name!r}")


def build_service(config: VoiceScribeConfig) -> TranscriptionService:
    """Wire a TranscriptionService from configuration.

    Capabilities whose credentials are missing are left out, so the service
    answers ServiceUnavailable for them instead of failing to start.
    """
    stt_backend = create_speech_backend(config) if config.has_speech_to_text() else None

    labeler = None
    if config.has_labeling():
        labeler = SpeakerLabeler(ChatGPTLabelingEngine(
            api_key=config.get_openai_api_key(),
            model=config.get('labeling.model', 'gpt-4'),
            temperature=config.get('labeling.temperature', 0.3),
            max_tokens=config.get('labeling.max_tokens', 2000),
            base_url=config.get('openai.base_url', 'https://api.openai.com/v1'),
            timeout=config.get('openai.timeout_seconds', 120.0),
        ))

    blob_store = create_blob_store(config) if config.has_object_storage() else None
    history = HistoryStore(config.get_database_url(), blob_store)

    logger.info(f"Transcription service: stt={stt_backend.service_name if stt_backend else None}, "
                f"labeling={'on' if labeler else 'off'}, storage={blob_store.name if blob_store else None}")
    return TranscriptionService(config, history, stt_backend, labeler, blob_store)
