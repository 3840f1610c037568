"""Unit tests for the transcription service."""

import asyncio
import re
import threading

import pytest

from voicescribe.errors import InvalidInput, ServiceUnavailable, UpstreamFailure
from voicescribe.services.transcription_service import (
    TranscriptionService,
    audio_object_name,
    build_service,
    compute_usage,
    count_speakers,
)
from voicescribe.transcription import AudioUpload, SpeakerLabeler, WhisperBackend


@pytest.fixture
def upload(wav_bytes):
    return AudioUpload(filename="recording.wav", content_type="audio/wav", data=wav_bytes)


@pytest.mark.unit
class TestUsage:
    """Test cases for cost computation."""

    def test_diarized_cost(self):
        usage = compute_usage(90.0, 4000, 0.006, 0.03)

        assert usage.duration_minutes == 2
        assert usage.base_cost == pytest.approx(0.012)
        assert usage.labeling_cost == pytest.approx(0.12)
        assert usage.usd_expended == pytest.approx(0.132)

    def test_exact_minute_is_not_rounded_up(self):
        assert compute_usage(120.0, 0, 0.006, 0.03).duration_minutes == 2

    @pytest.mark.parametrize("seconds", [None, 0.0])
    def test_unknown_duration_bills_one_minute(self, seconds):
        usage = compute_usage(seconds, 0, 0.006, 0.03)

        assert usage.duration_minutes == 1
        assert usage.usd_expended == pytest.approx(0.006)

    def test_count_speakers_with_names(self):
        text = "Ana: hola\nana: otra\nLuis: bien"
        assert count_speakers(text, ["Ana", "Luis", "Marta"], generated=False) == 2

    def test_count_speakers_counts_extra_generated_labels(self):
        text = "Speaker 1: hi\nSpeaker 2: hey\nSpeaker 3: hello"
        assert count_speakers(text, ["Speaker 1", "Speaker 2"], generated=True) == 3

    def test_count_speakers_ignores_extra_labels_with_names(self):
        text = "Ana: hola\nSpeaker 3: hello"
        assert count_speakers(text, ["Ana", "Luis"], generated=False) == 1

    def test_audio_object_name(self):
        assert re.fullmatch(r"audio-\d{13}\.webm", audio_object_name("audio", "audio/webm;codecs=opus"))
        assert audio_object_name("diarized-audio", "audio/wav").startswith("diarized-audio-")


@pytest.mark.unit
class TestTranscriptionService:
    """Test cases for TranscriptionService."""

    async def test_transcribe(self, transcription_service, upload, speech_backend, blob_store, history_store):
        record = await transcription_service.transcribe(upload)

        assert record.text == "hello there how are you"
        assert record.duration_seconds == 90.0
        assert record.tokens_expended == 0
        assert record.usd_expended == pytest.approx(0.012)
        assert record.original_text is None
        assert record.speaker_count is None
        assert re.fullmatch(r"https://blob\.test/audio-\d+\.wav", record.audio_url)
        assert blob_store.objects[record.audio_url] == upload.data
        assert speech_backend.uploads == [upload]
        assert history_store.get(record.id) == record

    async def test_diarize(self, transcription_service, upload, labeling_engine):
        record = await transcription_service.diarize(upload, speaker_count=2)

        assert record.text == "Speaker 1: hello there\nSpeaker 2: how are you"
        assert record.original_text == "hello there how are you"
        assert record.tokens_expended == 4000
        assert record.usd_expended == pytest.approx(0.132)
        assert record.speaker_count == 2
        assert "/diarized-audio-" in record.audio_url
        assert '"Speaker 1", "Speaker 2"' in labeling_engine.prompts[0]

    async def test_diarize_with_names(self, test_config, history_store, speech_backend, make_labeling_engine,
                                      upload):
        engine = make_labeling_engine(content="Ana: hello there\nLuis: how are you", total_tokens=500)
        service = TranscriptionService(test_config, history_store, speech_backend, SpeakerLabeler(engine))

        record = await service.diarize(upload, speaker_count=5, speaker_names=["Ana", "Luis"])

        assert record.speaker_count == 2
        assert record.audio_url == ""
        assert '"Ana", "Luis"' in engine.prompts[0]

    async def test_labeling_failure_keeps_raw_text(self, test_config, history_store, speech_backend,
                                                   make_labeling_engine, upload):
        engine = make_labeling_engine(error=UpstreamFailure("ChatGPT API error: 503"))
        service = TranscriptionService(test_config, history_store, speech_backend, SpeakerLabeler(engine))

        record = await service.diarize(upload)

        assert record.text == "hello there how are you"
        assert record.original_text == "hello there how are you"
        assert record.tokens_expended == 0
        assert record.speaker_count == 0
        assert record.usd_expended == pytest.approx(0.012)

    async def test_non_audio_rejected_before_speech_to_text(self, transcription_service, speech_backend,
                                                            history_store):
        upload = AudioUpload(filename="notes.txt", content_type="text/plain", data=b"hello")

        with pytest.raises(InvalidInput, match="Invalid file type"):
            await transcription_service.transcribe(upload)

        assert speech_backend.uploads == []
        assert history_store.list().total == 0

    async def test_missing_upload(self, transcription_service):
        with pytest.raises(InvalidInput, match="No audio file provided"):
            await transcription_service.diarize(None)

    async def test_invalid_speaker_count(self, transcription_service, upload, speech_backend):
        with pytest.raises(InvalidInput):
            await transcription_service.diarize(upload, speaker_count=0)
        assert speech_backend.uploads == []

    async def test_speech_to_text_not_configured(self, test_config, history_store, upload):
        service = TranscriptionService(test_config, history_store)

        with pytest.raises(ServiceUnavailable, match="Speech-to-text service not configured"):
            await service.transcribe(upload)
        assert history_store.list().total == 0

    async def test_labeling_not_configured(self, test_config, history_store, speech_backend, upload):
        service = TranscriptionService(test_config, history_store, speech_backend)

        with pytest.raises(ServiceUnavailable, match="Speaker labeling service not configured"):
            await service.diarize(upload)
        assert speech_backend.uploads == []

    async def test_upstream_failure_persists_nothing(self, test_config, history_store, make_speech_backend,
                                                     blob_store, upload):
        backend = make_speech_backend(error=UpstreamFailure("Whisper API error: 500"))
        service = TranscriptionService(test_config, history_store, backend, blob_store=blob_store)

        with pytest.raises(UpstreamFailure):
            await service.transcribe(upload)

        assert history_store.list().total == 0
        assert blob_store.objects == {}

    async def test_storage_failure_leaves_empty_audio_url(self, test_config, history_store, speech_backend,
                                                          make_blob_store, upload):
        service = TranscriptionService(test_config, history_store, speech_backend,
                                       blob_store=make_blob_store(fail_uploads=True))

        record = await service.transcribe(upload)

        assert record.audio_url == ""
        assert history_store.get(record.id) is not None

    async def test_storage_timeout_leaves_empty_audio_url(self, test_config, history_store, speech_backend,
                                                          blob_store, upload, monkeypatch):
        async def hung_put(filename, data, content_type):
            raise asyncio.TimeoutError()

        monkeypatch.setattr(blob_store, "put", hung_put)
        service = TranscriptionService(test_config, history_store, speech_backend, blob_store=blob_store)

        record = await service.transcribe(upload)

        assert record.audio_url == ""
        assert history_store.get(record.id) is not None

    async def test_labeling_timeout_keeps_raw_text(self, test_config, history_store, speech_backend,
                                                   make_labeling_engine, upload):
        engine = make_labeling_engine(error=asyncio.TimeoutError())
        service = TranscriptionService(test_config, history_store, speech_backend, SpeakerLabeler(engine))

        record = await service.diarize(upload)

        assert record.text == "hello there how are you"
        assert record.tokens_expended == 0

    async def test_record_is_saved_off_the_event_loop(self, transcription_service, history_store, upload,
                                                      monkeypatch):
        threads = []
        original_create = history_store.create

        def tracking_create(**fields):
            threads.append(threading.get_ident())
            return original_create(**fields)

        monkeypatch.setattr(history_store, "create", tracking_create)

        await transcription_service.transcribe(upload)

        assert threads and threads[0] != threading.get_ident()

    async def test_configured_rates(self, make_config, history_store, make_speech_backend, upload):
        config = make_config({"pricing": {"speech_to_text_per_minute": 0.01}})
        service = TranscriptionService(config, history_store, make_speech_backend(duration_seconds=30.0))

        record = await service.transcribe(upload)

        assert record.usd_expended == pytest.approx(0.01)


@pytest.mark.unit
class TestBuildService:
    """Test cases for wiring the service from configuration."""

    def test_fully_configured(self, test_config):
        service = build_service(test_config)

        assert isinstance(service.stt_backend, WhisperBackend)
        assert service.labeler is not None
        assert service.blob_store.name == "local"

    def test_missing_credentials_degrade(self, make_config):
        service = build_service(make_config({"storage": {"backend": "vercel"}}))

        assert not service.speech_to_text_available
        assert service.labeler is None
        assert not service.object_storage_available

    def test_request_timeouts_from_config(self, make_config):
        config = make_config(
            {"storage": {"backend": "vercel", "timeout_seconds": 15}, "openai": {"timeout_seconds": 45}},
            {"OPENAI_API_KEY": "test-key", "BLOB_READ_WRITE_TOKEN": "blob-token"},
        )

        service = build_service(config)

        assert service.stt_backend.timeout.total == 45
        assert service.labeler.engine.timeout.total == 45
        assert service.blob_store.timeout.total == 15
