"""Media Chunk Pipeline - Record store.

Persists one AnalysisRecord per submitted job. Status is set unconditionally;
no transition validation happens here.
"""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.errors import RecordNotFoundError, StorageFault
from app.models import AnalysisRecord

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


# --- Status values ---

STATUS_UPLOADING = "uploading"
STATUS_QUEUED = "queued"
STATUS_PROCESSING_UPLOAD = "processing_upload"
STATUS_PROCESSING_ANALYZING = "processing_analyzing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})


def generate_record_id() -> str:
    """Generate a unique record ID (uuid4 hex, 32 chars)."""
    return uuid.uuid4().hex


def create_record(
    session: Session,
    user_id: str,
    file_name: str,
    file_url: str = "",
    file_size: int = 0,
) -> AnalysisRecord:
    """Insert a new record with status=uploading, processed=False.

    Commits the session.

    Raises:
        StorageFault: If the insert fails.
    """
    record = AnalysisRecord(
        record_id=generate_record_id(),
        user_id=user_id,
        file_name=file_name,
        file_url=file_url,
        file_size=file_size,
        status=STATUS_UPLOADING,
        processed=False,
        result_json=None,
    )
    session.add(record)
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageFault(f"Failed to create record: {e}") from e
    return record


def get_record(session: Session, record_id: str) -> AnalysisRecord:
    """Load a record by id.

    Raises:
        RecordNotFoundError: If no such record exists.
        StorageFault: If the lookup fails.
    """
    stmt = select(AnalysisRecord).where(AnalysisRecord.record_id == record_id)
    try:
        record = session.execute(stmt).scalar_one_or_none()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageFault(f"Failed to load record {record_id}: {e}") from e
    if record is None:
        raise RecordNotFoundError(record_id)
    return record


def update_status(
    session: Session,
    record_id: str,
    status: str,
    result: Any = None,
    *,
    file_url: str | None = None,
    file_size: int | None = None,
) -> AnalysisRecord:
    """Set a record's status, and optionally its result and artifact fields.

    When result is given it is stored as JSON and processed is set True.
    Commits the session.

    Args:
        session: Database session.
        record_id: Record to update.
        status: New status (not validated against the current one).
        result: Optional result payload (text or JSON-serializable value).
        file_url: Optional artifact URL.
        file_size: Optional artifact size in bytes.

    Raises:
        RecordNotFoundError: If the record does not exist.
        StorageFault: If the update fails.
    """
    record = get_record(session, record_id)
    record.status = status
    if result is not None:
        record.result_json = json.dumps(result)
        record.processed = True
    if file_url is not None:
        record.file_url = file_url
    if file_size is not None:
        record.file_size = file_size

    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageFault(f"Failed to update record {record_id}: {e}") from e
    return record


def load_result(record: AnalysisRecord) -> Any:
    """Decode the stored result payload (None if absent or unreadable)."""
    if not record.result_json:
        return None
    try:
        return json.loads(record.result_json)
    except (json.JSONDecodeError, TypeError):
        return None
