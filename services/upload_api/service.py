"""Media Chunk Pipeline - Upload service logic.

Merge flow for one upload session:
1. Validate the session id (nothing is written for a bad id)
2. Acquire the per-session merge lock
3. Create the AnalysisRecord (status=uploading)
4. Merge chunks into the final artifact
5. Mark the record queued with the artifact URL and size
6. Enqueue processing (non-blocking, best-effort)
7. Release the lock

A failed merge leaves the record at uploading and writes no artifact.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.chunks import merge_chunks, validate_session_id
from app.merge_lock import acquire_merge_lock, generate_holder_id, release_merge_lock
from app.records import STATUS_QUEUED, create_record, update_status
from app.utils.paths import artifact_key

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.blob_store import BlobStore
    from app.schemas import MergeRequest

logger = logging.getLogger(__name__)


# --- Result Types ---


@dataclass
class MergeResult:
    """Result of a successful merge-and-queue operation."""

    record_id: str
    file_url: str
    file_path: str
    file_size: int


# --- Upload Service ---


def merge_and_queue(
    session: Session,
    blob_store: BlobStore,
    request: MergeRequest,
    now_ms: int | None = None,
) -> MergeResult:
    """Merge an upload session and queue the resulting record for processing.

    Args:
        session: Active database session.
        blob_store: Blob store holding the session's chunks.
        request: Validated merge request.
        now_ms: Timestamp used in the artifact key (defaults to current time).

    Returns:
        MergeResult with record id and artifact URL.

    Raises:
        ValidationError: If the session id is not a valid key segment.
        MergeInProgressError: If another merge holds this session's lock.
        ChunkMissingError: If any expected part is absent.
        StorageFault: On blob store or database failure.
    """
    validate_session_id(request.session_id)
    holder_id = generate_holder_id()
    acquire_merge_lock(session, request.session_id, holder_id)

    try:
        record = create_record(session, request.user_id, request.file_name, "", 0)
        logger.info(
            "Created record_id=%s for session_id=%s (user_id=%s)",
            record.record_id,
            request.session_id,
            request.user_id,
        )

        if now_ms is None:
            now_ms = int(time.time() * 1000)
        final_path = artifact_key(request.user_id, request.file_name, now_ms)

        file_url = merge_chunks(
            blob_store,
            request.session_id,
            request.total_parts,
            final_path,
            request.file_type,
        )
        file_size = blob_store.stat(final_path).size

        update_status(
            session,
            record.record_id,
            STATUS_QUEUED,
            file_url=file_url,
            file_size=file_size,
        )

        _enqueue_processing_safe(record.record_id, file_url, request.file_type)

        return MergeResult(
            record_id=record.record_id,
            file_url=file_url,
            file_path=final_path,
            file_size=file_size,
        )
    finally:
        _release_lock_safe(session, request.session_id, holder_id)


# --- Internal Helpers ---


def _release_lock_safe(session: Session, session_id: str, holder_id: str) -> None:
    """Release the merge lock; a failure only delays the next merge until the TTL."""
    try:
        release_merge_lock(session, session_id, holder_id)
    except Exception:
        session.rollback()
        logger.warning(
            "Failed to release merge lock for session_id=%s (expires by TTL)",
            session_id,
            exc_info=True,
        )


def _enqueue_processing_safe(record_id: str, file_url: str, mime_type: str) -> None:
    """Enqueue record processing, logging instead of failing the merge.

    If enqueueing fails the record stays queued and the failure is in the log.
    """
    try:
        from app.huey_app import enqueue_record_processing

        enqueue_record_processing(record_id, file_url, mime_type)
    except Exception:
        logger.warning(
            "Failed to enqueue processing for record_id=%s (non-fatal)",
            record_id,
            exc_info=True,
        )
