"""Wire schemas for the HTTP API.

The server serializes with these models and the recorder client validates
responses with them, so both sides agree on one contract.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .transcription import TranscriptionRecord, HistoryPage


class TranscriptionPayload(BaseModel):
    """A transcription record as sent over the wire."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    audio_url: str = Field(default="", alias="audioUrl")
    timestamp: datetime
    duration: float = 0.0
    tokens: int = Field(default=0, ge=0)
    duration_minutes: int = Field(default=0, ge=0, alias="durationMinutes")
    usd_expended: float = Field(default=0.0, ge=0.0, alias="usdExpended")
    original_text: Optional[str] = Field(default=None, alias="originalText")
    speaker_count: Optional[int] = Field(default=None, ge=0, alias="speakerCount")

    @classmethod
    def from_record(cls, record: TranscriptionRecord,
                    duration_minutes: Optional[int] = None) -> "TranscriptionPayload":
        return cls(
            id=record.id,
            text=record.text,
            audio_url=record.audio_url or "",
            timestamp=record.created_at,
            duration=record.duration_seconds,
            tokens=record.tokens_expended,
            duration_minutes=record.duration_minutes if duration_minutes is None else duration_minutes,
            usd_expended=record.usd_expended,
            original_text=record.original_text,
            speaker_count=record.speaker_count,
        )

    def to_record(self) -> TranscriptionRecord:
        return TranscriptionRecord(
            id=self.id,
            text=self.text,
            created_at=self.timestamp,
            audio_url=self.audio_url,
            original_text=self.original_text,
            duration_seconds=self.duration,
            tokens_expended=self.tokens,
            usd_expended=self.usd_expended,
            speaker_count=self.speaker_count,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TranscriptionResponse(BaseModel):
    """Body of a successful POST /transcribe or /diarize."""
    success: bool
    transcription: TranscriptionPayload

    @field_validator("success")
    @classmethod
    def _must_succeed(cls, value: bool) -> bool:
        if not value:
            raise ValueError("response reports failure")
        return value


class HistoryResponse(BaseModel):
    """Body of GET /transcriptions."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    transcriptions: List[TranscriptionPayload]
    total: int
    total_tokens: int = Field(alias="totalTokens")
    total_cost: float = Field(alias="totalCost")

    @classmethod
    def from_page(cls, page: HistoryPage) -> "HistoryResponse":
        return cls(
            success=True,
            transcriptions=[TranscriptionPayload.from_record(r) for r in page.records],
            total=page.total,
            total_tokens=page.total_tokens,
            total_cost=page.total_cost,
        )

    def to_page(self) -> HistoryPage:
        return HistoryPage(
            records=[t.to_record() for t in self.transcriptions],
            total_tokens=self.total_tokens,
            total_cost=self.total_cost,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SubmitOptions(BaseModel):
    """Options for submitting a captured clip."""
    diarize: bool = False
    expected_speaker_count: int = Field(default=2, ge=2)
    speaker_names: Optional[List[str]] = None

    @field_validator("speaker_names")
    @classmethod
    def _strip_names(cls, names: Optional[List[str]]) -> Optional[List[str]]:
        if names is None:
            return None
        cleaned = [name.strip() for name in names if name and name.strip()]
        return cleaned or None
