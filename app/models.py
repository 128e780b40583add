"""Media Chunk Pipeline - SQLAlchemy ORM models.

Database tables:
1. analysis_records
2. merge_locks
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.config import SESSION_ID_MAX_LENGTH


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class AnalysisRecord(Base):
    """One processing job: merged artifact plus its analysis status and result.

    Status is the only field with ordering semantics:
    uploading -> queued -> processing_upload -> processing_analyzing -> completed,
    with failed reachable from any non-terminal state.
    """

    __tablename__ = "analysis_records"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Public record identifier
    record_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Owner and artifact information
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Job state
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="uploading", index=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Analysis result (or error payload) as JSON string (parsed by application)
    result_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class MergeLock(Base):
    """Per-session merge lock.

    Lock key: session_id. Locks with expires_at < now can be reclaimed.
    """

    __tablename__ = "merge_locks"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Lock key
    session_id: Mapped[str] = mapped_column(
        String(SESSION_ID_MAX_LENGTH), unique=True, nullable=False
    )

    # Lock holder
    holder_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Timestamps for TTL calculation
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_merge_locks_expires_at", "expires_at"),)
