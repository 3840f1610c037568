"""Storage module for VoiceScribe."""

from .blob_store import BlobStore, VercelBlobStore, LocalBlobStore
from .history_store import HistoryStore, TranscriptionRow

__all__ = [
    "BlobStore",
    "VercelBlobStore",
    "LocalBlobStore",
    "HistoryStore",
    "TranscriptionRow",
]
