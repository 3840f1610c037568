"""Pytest configuration and fixtures for VoiceScribe tests."""

import io
import logging
import tempfile
import threading
import time
import wave
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest
import yaml

from voicescribe.config import VoiceScribeConfig
from voicescribe.errors import StorageFailure
from voicescribe.models.transcription import SpeechTranscript
from voicescribe.services.transcription_service import TranscriptionService
from voicescribe.storage import BlobStore, HistoryStore
from voicescribe.transcription import AbstractSpeechToTextBackend, AudioUpload, EngineReply, SpeakerLabeler


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeInputDevice:
    """In-memory microphone producing a sine tone."""

    def __init__(self, sample_rate: int, block_delay: float = 0.001):
        self.sample_rate = sample_rate
        self.block_delay = block_delay
        self.close_calls = 0
        self.reads = 0
        self.reads_after_close = 0
        self.lock = threading.Lock()
        self.phase = 0

    def read(self, frames: int) -> bytes:
        time.sleep(self.block_delay)
        with self.lock:
            if self.close_calls:
                self.reads_after_close += 1
            self.reads += 1
            t = (np.arange(frames) + self.phase) / self.sample_rate
            self.phase += frames
        return (np.sin(2 * np.pi * 440 * t) * 16000).astype(np.int16).tobytes()

    def close(self) -> None:
        with self.lock:
            self.close_calls += 1


class FakeDeviceFactory:
    """Device factory recording every device it opens."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.devices: List[FakeInputDevice] = []

    def __call__(self, sample_rate, channels, chunk_size, constraints):
        if self.error is not None:
            raise self.error
        device = FakeInputDevice(sample_rate)
        self.devices.append(device)
        return device


class FakeSpeechBackend(AbstractSpeechToTextBackend):
    """Speech-to-text backend returning a canned transcript."""

    service_name = "fake"

    def __init__(self, text: str = "hello there how are you", duration_seconds: Optional[float] = 90.0,
                 error: Optional[Exception] = None):
        super().__init__("en")
        self.text = text
        self.duration_seconds = duration_seconds
        self.error = error
        self.uploads: List[AudioUpload] = []

    async def transcribe(self, upload: AudioUpload) -> SpeechTranscript:
        self.uploads.append(upload)
        if self.error is not None:
            raise self.error
        return SpeechTranscript(text=self.text, duration_seconds=self.duration_seconds, service=self.service_name)


class FakeLabelingEngine:
    """Labeling engine returning a canned reply, or raising."""

    def __init__(self, content: str = "", total_tokens: int = 0, error: Optional[Exception] = None):
        self.content = content
        self.total_tokens = total_tokens
        self.error = error
        self.prompts: List[str] = []

    async def send_prompt(self, prompt: str, system_prompt: Optional[str] = None) -> EngineReply:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return EngineReply(content=self.content, total_tokens=self.total_tokens)


class MemoryBlobStore(BlobStore):
    """Blob store keeping objects in a dict; URLs listed in fail_deletes cannot be deleted."""

    name = "memory"

    def __init__(self, fail_uploads: bool = False):
        self.objects = {}
        self.fail_uploads = fail_uploads
        self.fail_deletes = set()
        self.delete_calls: List[str] = []

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        if self.fail_uploads:
            raise StorageFailure("upload refused")
        url = f"https://blob.test/{filename}"
        self.objects[url] = data
        return url

    async def delete(self, url: str) -> None:
        self.delete_calls.append(url)
        if url in self.fail_deletes:
            raise StorageFailure(f"cannot delete {url}")
        self.objects.pop(url, None)


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # Generate 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    t = np.arange(1024) / sample_rate
    audio_data = (np.sin(2 * np.pi * 440 * t) * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def wav_bytes(sample_audio_chunk):
    """A short mono 16 kHz WAV file."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
        for _ in range(16):
            wf.writeframes(sample_audio_chunk)
    return buffer.getvalue()


@pytest.fixture
def wait_for():
    return wait_until


@pytest.fixture
def device_factory():
    return FakeDeviceFactory()


@pytest.fixture
def failing_device_factory():
    return FakeDeviceFactory(error=OSError("Permission denied"))


@pytest.fixture
def make_speech_backend():
    return FakeSpeechBackend


@pytest.fixture
def make_labeling_engine():
    return FakeLabelingEngine


@pytest.fixture
def make_blob_store():
    return MemoryBlobStore


@pytest.fixture
def make_config(temp_data_dir):
    """Build a configuration from a YAML mapping and an environment."""
    def _make(settings: Optional[dict] = None, environ: Optional[dict] = None) -> VoiceScribeConfig:
        config_file = Path(temp_data_dir) / "voicescribe.yaml"
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(settings or {}, f)
        return VoiceScribeConfig(str(config_file), environ=environ or {})
    return _make


@pytest.fixture
def test_config(make_config):
    """Fully configured setup using local storage."""
    return make_config(
        {"storage": {"backend": "local", "data_directory": "data"}},
        {"OPENAI_API_KEY": "test-key"},
    )


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def history_store(blob_store):
    return HistoryStore("sqlite://", blob_store)


@pytest.fixture
def speech_backend():
    return FakeSpeechBackend()


@pytest.fixture
def labeling_engine():
    return FakeLabelingEngine(
        content="Speaker 1: hello there\nSpeaker 2: how are you",
        total_tokens=4000,
    )


@pytest.fixture
def transcription_service(test_config, history_store, speech_backend, labeling_engine, blob_store):
    return TranscriptionService(
        test_config,
        history_store,
        stt_backend=speech_backend,
        labeler=SpeakerLabeler(labeling_engine),
        blob_store=blob_store,
    )
