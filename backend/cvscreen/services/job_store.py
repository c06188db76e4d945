"""
Document Job Store
══════════════════

Durable record of each extraction job and its status.

  create            → row in 'processing' (or 'pending')
  mark_processing   → pending → processing   (no-op if already processing)
  mark_processed    → pending|processing → processed, stores the text
  mark_error        → pending|processing → error, stores the reason
  get               → immutable DocumentJob snapshot
  list_stale        → processing jobs not touched since a cutoff

Terminal transitions are a single conditional UPDATE guarded by
``WHERE status IN ('pending', 'processing')``, so two writers racing to
finish the same job cannot both win and a terminal row is never rewritten.

Every database failure surfaces as PersistenceError; callers never see
SQLAlchemy exceptions.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cvscreen.core.errors import InvalidInput, InvalidTransition, JobNotFound, PersistenceError
from cvscreen.models.documents import ACTIVE_STATUSES, DocumentRecord, JobStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentJob:
    """Read-only snapshot of a documents row."""
    id:             uuid.UUID
    filename:       str
    content_type:   str
    file_path:      str
    status:         JobStatus
    processed_text: Optional[str]
    error:          Optional[str]
    processed_at:   Optional[datetime]
    created_at:     Optional[datetime]
    updated_at:     Optional[datetime]

    @classmethod
    def from_record(cls, row: DocumentRecord) -> "DocumentJob":
        return cls(
            id=row.id,
            filename=row.filename,
            content_type=row.content_type,
            file_path=row.file_path,
            status=JobStatus(row.status),
            processed_text=row.processed_text,
            error=row.error,
            processed_at=row.processed_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(job_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(job_id, uuid.UUID):
        return job_id
    try:
        return uuid.UUID(str(job_id))
    except ValueError:
        raise JobNotFound(job_id) from None


class DocumentJobStore:
    """
    Job persistence over an async SQLAlchemy session factory.

    Each operation opens its own short transaction; the store holds no
    session state and is safe to share between concurrent jobs.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("Job store failure | op=%s error=%s", operation, exc)
            raise PersistenceError(f"Job store unavailable during {operation}: {exc}") from exc

    # ------------------------------------------------------------------
    # Create + read
    # ------------------------------------------------------------------

    async def create(
        self,
        filename:     str,
        content_type: str,
        file_path:    str,
        status:       JobStatus = JobStatus.PROCESSING,
    ) -> DocumentJob:
        if status.is_terminal:
            raise InvalidInput("A job must start as pending or processing", field="status")

        now = _utcnow()
        record = DocumentRecord(
            id=uuid.uuid4(),
            filename=filename,
            content_type=content_type,
            file_path=file_path,
            status=status.value,
            created_at=now,
            updated_at=now,
        )
        async with self._transaction("create") as session:
            session.add(record)

        logger.info(
            "Job created | id=%s file=%s status=%s", record.id, file_path, status.value,
        )
        return DocumentJob.from_record(record)

    async def get(self, job_id: uuid.UUID | str) -> DocumentJob:
        key = _as_uuid(job_id)
        async with self._transaction("get") as session:
            record = await session.get(DocumentRecord, key)
            if record is None:
                raise JobNotFound(job_id)
            return DocumentJob.from_record(record)

    async def list_stale(self, older_than: datetime, limit: int = 100) -> list[DocumentJob]:
        """Processing jobs whose last update is older than ``older_than``."""
        stmt = (
            select(DocumentRecord)
            .where(
                DocumentRecord.status == JobStatus.PROCESSING.value,
                DocumentRecord.updated_at < older_than,
            )
            .order_by(DocumentRecord.updated_at)
            .limit(limit)
        )
        async with self._transaction("list_stale") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [DocumentJob.from_record(r) for r in rows]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def mark_processing(self, job_id: uuid.UUID | str) -> None:
        key = _as_uuid(job_id)
        stmt = (
            update(DocumentRecord)
            .where(
                DocumentRecord.id == key,
                DocumentRecord.status == JobStatus.PENDING.value,
            )
            .values(status=JobStatus.PROCESSING.value, updated_at=_utcnow())
        )
        async with self._transaction("mark_processing") as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return
            current = await self._current_status(session, key, job_id)
            if current is JobStatus.PROCESSING:
                return
            raise InvalidTransition(job_id, current.value, JobStatus.PROCESSING.value)

    async def mark_processed(self, job_id: uuid.UUID | str, text: str) -> None:
        await self._finish(job_id, JobStatus.PROCESSED, processed_text=text)
        logger.info("Job processed | id=%s chars=%d", job_id, len(text))

    async def mark_error(self, job_id: uuid.UUID | str, reason: str) -> None:
        await self._finish(job_id, JobStatus.ERROR, error=reason)
        logger.info("Job failed | id=%s reason=%s", job_id, reason)

    async def _finish(self, job_id: uuid.UUID | str, target: JobStatus, **values) -> None:
        key = _as_uuid(job_id)
        now = _utcnow()
        stmt = (
            update(DocumentRecord)
            .where(
                DocumentRecord.id == key,
                DocumentRecord.status.in_(ACTIVE_STATUSES),
            )
            .values(status=target.value, processed_at=now, updated_at=now, **values)
        )
        async with self._transaction(f"mark_{target.value}") as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return
            current = await self._current_status(session, key, job_id)
            raise InvalidTransition(job_id, current.value, target.value)

    @staticmethod
    async def _current_status(
        session: AsyncSession,
        key:     uuid.UUID,
        job_id:  uuid.UUID | str,
    ) -> JobStatus:
        status = await session.scalar(
            select(DocumentRecord.status).where(DocumentRecord.id == key)
        )
        if status is None:
            raise JobNotFound(job_id)
        return JobStatus(status)
