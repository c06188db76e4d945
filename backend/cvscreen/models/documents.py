"""
SQLAlchemy ORM Models — Document extraction jobs

One row per uploaded CV, tracking it from upload through text extraction.
Using SQLAlchemy mapped classes (2.x style) for full async support.

Portable column types (sqlalchemy.Uuid, DateTime(timezone=True)) keep the
table usable on PostgreSQL (asyncpg) and on SQLite (aiosqlite, tests).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class JobStatus(str, enum.Enum):
    """
    State machine (status column):
        pending    — row created, processing not yet started
        processing — extraction running in the background
        processed  — processed_text holds the extracted text
        error      — error holds a human-readable reason

    Transitions only move forward; processed and error are terminal.
    """
    PENDING    = "pending"
    PROCESSING = "processing"
    PROCESSED  = "processed"
    ERROR      = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.PROCESSED, JobStatus.ERROR)


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class DocumentRecord(Base):
    """
    file_path is assigned at creation (sanitized name + random suffix) and is
    never updated; the unique constraint guards against collisions.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'error')",
            name="documents_status_check",
        ),
        Index("idx_documents_status_updated", "status", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    filename: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Original sanitized filename provided by the client",
    )
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        unique=True,
        comment="<sanitized stem>_<uuid4 hex><ext>",
    )

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        server_default=JobStatus.PENDING.value,
    )
    processed_text: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status='processed'",
    )
    error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status='error'",
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord id={self.id} status={self.status} file={self.filename!r}>"
