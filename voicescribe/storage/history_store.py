"""Persisted transcription history backed by SQLAlchemy."""

import asyncio
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import DateTime, Float, Integer, String, Text, create_engine, delete, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .blob_store import BlobStore
from ..errors import InternalError, NotFound
from ..models.transcription import HistoryPage, TranscriptionRecord

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class TranscriptionRow(Base):
    """One transcription, as stored in the database."""

    __tablename__ = "transcriptions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    audio_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    transcription_text: Mapped[str] = mapped_column(Text, nullable=False)
    original_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tokens_expended: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_in_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    usd_expended: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    speaker_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def to_record(self) -> TranscriptionRecord:
        created_at = self.created_at
        if created_at.tzinfo is None:
            # SQLite drops the offset; values are always written in UTC
            created_at = created_at.replace(tzinfo=timezone.utc)
        return TranscriptionRecord(
            id=self.id,
            text=self.transcription_text,
            created_at=created_at,
            audio_url=self.audio_url or "",
            original_text=self.original_text,
            duration_seconds=self.time_in_seconds,
            tokens_expended=self.tokens_expended,
            usd_expended=self.usd_expended,
            speaker_count=self.speaker_count,
        )


def create_db_engine(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if not url.database or url.database == ":memory:":
            # In-memory databases live on one shared connection
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url)


class HistoryStore:
    """Append, list, delete and clear transcription records.

    The query methods are synchronous; the async delete and clear run them in
    a worker thread, and async callers do the same for create and list.
    """

    def __init__(self, database_url: str, blob_store: Optional[BlobStore] = None):
        """Initialize history store.

        Args:
            database_url: SQLAlchemy database URL
            blob_store: Object storage holding each record's audio, if any
        """
        self.engine = create_db_engine(database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)
        self.blob_store = blob_store
        logger.info(f"HistoryStore initialized ({self.engine.url.get_backend_name()})")

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}")
            raise InternalError(f"Database error: {e}") from e

    def create(self,
               text: str,
               audio_url: str = "",
               original_text: Optional[str] = None,
               duration_seconds: float = 0.0,
               tokens_expended: int = 0,
               usd_expended: float = 0.0,
               speaker_count: Optional[int] = None) -> TranscriptionRecord:
        """Persist a new record with a server-assigned id and creation time."""
        row = TranscriptionRow(
            id=uuid.uuid4().hex,
            audio_url=audio_url or "",
            transcription_text=text,
            original_text=original_text,
            tokens_expended=tokens_expended,
            time_in_seconds=duration_seconds,
            usd_expended=usd_expended,
            speaker_count=speaker_count,
            created_at=datetime.now(timezone.utc),
        )
        with self._session() as session:
            session.add(row)
            session.commit()
        logger.info(f"Saved transcription {row.id}")
        return row.to_record()

    def get(self, record_id: str) -> Optional[TranscriptionRecord]:
        with self._session() as session:
            row = session.get(TranscriptionRow, record_id)
            return row.to_record() if row is not None else None

    def list(self) -> HistoryPage:
        """All records newest first, with total tokens and total cost."""
        with self._session() as session:
            rows = session.scalars(
                select(TranscriptionRow).order_by(TranscriptionRow.created_at.desc(), TranscriptionRow.id)
            ).all()
            total_tokens, total_cost = session.execute(
                select(
                    func.coalesce(func.sum(TranscriptionRow.tokens_expended), 0),
                    func.coalesce(func.sum(TranscriptionRow.usd_expended), 0.0),
                )
            ).one()
        return HistoryPage(
            records=[row.to_record() for row in rows],
            total_tokens=int(total_tokens),
            total_cost=float(total_cost),
        )

    async def delete(self, record_id: str) -> None:
        """Delete one record and, best effort, its stored audio.

        Raises:
            NotFound: If no record has this id
        """
        record = await asyncio.to_thread(self.get, record_id)
        if record is None:
            raise NotFound(f"Transcription not found: {record_id}")

        await self._delete_audio(record.audio_url)
        await asyncio.to_thread(self._delete_rows, TranscriptionRow.id == record_id)
        logger.info(f"Deleted transcription {record_id}")

    async def clear_all(self) -> int:
        """Delete every record; stored audio is removed concurrently, best effort.

        Returns:
            Number of records removed
        """
        urls = await asyncio.to_thread(self._audio_urls)

        # Failures are isolated per object; wait for every outcome before touching the database
        await asyncio.gather(*(self._delete_audio(url) for url in urls), return_exceptions=True)

        deleted = await asyncio.to_thread(self._delete_rows)
        logger.info(f"Cleared {deleted} transcriptions")
        return deleted

    async def _delete_audio(self, url: str) -> None:
        if not url or self.blob_store is None:
            return
        try:
            await self.blob_store.delete(url)
        except Exception as e:
            logger.error(f"Error deleting audio file {url}, leaving orphaned blob: {e!r}")

    def _audio_urls(self) -> List[str]:
        with self._session() as session:
            return list(session.scalars(select(TranscriptionRow.audio_url)).all())

    def _delete_rows(self, *criteria) -> int:
        with self._session() as session:
            statement = delete(TranscriptionRow)
            if criteria:
                statement = statement.where(*criteria)
            result = session.execute(statement)
            session.commit()
            return result.rowcount
