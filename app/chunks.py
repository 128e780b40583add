"""Media Chunk Pipeline - Chunk upload, merge and temp cleanup.

Chunks live under temp/{session_id}/{part_number} in the blob store. The set
of chunks present there is the whole upload session state; nothing else is
persisted until merge time.

Merge reads parts 0..total_parts-1 in order, so the output never depends on
the order in which parts arrived.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from app.blob_store import DEFAULT_CONTENT_TYPE, BlobStore
from app.config import SESSION_ID_MAX_LENGTH, TEMP_PREFIX
from app.errors import BlobNotFoundError, ChunkMissingError, StorageFault, ValidationError
from app.utils.paths import chunk_key

logger = logging.getLogger(__name__)


def validate_session_id(session_id: str | None) -> str:
    """Check that a session id is usable as a single key segment.

    Raises:
        ValidationError: If the id is empty, longer than SESSION_ID_MAX_LENGTH,
            or contains path separators.
    """
    if not session_id:
        raise ValidationError("session_id is required")
    if len(session_id) > SESSION_ID_MAX_LENGTH:
        raise ValidationError(
            f"session_id must be at most {SESSION_ID_MAX_LENGTH} characters, got {len(session_id)}"
        )
    if "/" in session_id or "\\" in session_id or session_id in (".", ".."):
        raise ValidationError(f"Invalid session_id: {session_id!r}")
    return session_id


def upload_chunk(
    blob_store: BlobStore,
    session_id: str,
    part_number: int,
    data: bytes,
) -> str:
    """Store one chunk, overwriting any previous upload of the same part.

    Args:
        blob_store: Target blob store.
        session_id: Opaque upload session identifier.
        part_number: Zero-based part index.
        data: Chunk bytes (non-empty).

    Returns:
        The blob key written.

    Raises:
        ValidationError: On empty session id, negative part number or empty data.
        StorageFault: If the store write fails. Safe to retry.
    """
    validate_session_id(session_id)
    if part_number is None or part_number < 0:
        raise ValidationError(f"part_number must be a non-negative integer, got {part_number}")
    if not data:
        raise ValidationError("chunk data must not be empty")

    key = chunk_key(session_id, part_number)
    blob_store.upload(key, data, content_type=DEFAULT_CONTENT_TYPE, upsert=True)
    logger.debug("Stored chunk session_id=%s part=%d bytes=%d", session_id, part_number, len(data))
    return key


def read_session_parts(blob_store: BlobStore, session_id: str, total_parts: int) -> list[bytes]:
    """Fetch parts 0..total_parts-1 in order.

    Raises:
        ChunkMissingError: On the first absent part.
    """
    parts = []
    for part_number in range(total_parts):
        try:
            parts.append(blob_store.download(chunk_key(session_id, part_number)))
        except BlobNotFoundError as e:
            raise ChunkMissingError(session_id, part_number) from e
    return parts


def merge_chunks(
    blob_store: BlobStore,
    session_id: str,
    total_parts: int,
    final_path: str,
    content_type: str,
    schedule_cleanup=None,
) -> str:
    """Concatenate a session's chunks into one artifact and return its public URL.

    If any part is missing nothing is written to final_path. Temp chunks are
    handed off for deletion after a successful write; failure to schedule
    that is logged and otherwise ignored.

    Args:
        blob_store: Blob store holding the chunks and receiving the artifact.
        session_id: Upload session identifier.
        total_parts: Exact number of parts the client sent.
        final_path: Blob key for the merged artifact.
        content_type: MIME type of the merged artifact.
        schedule_cleanup: Callable(session_id, total_parts) used to hand off
            temp deletion. Defaults to the task queue.

    Returns:
        Public URL of the merged artifact.

    Raises:
        ValidationError: If total_parts < 1 or session_id is invalid.
        ChunkMissingError: If any of the expected parts is absent.
        StorageFault: On store read/write failure.
    """
    validate_session_id(session_id)
    if total_parts is None or total_parts < 1:
        raise ValidationError(f"total_parts must be >= 1, got {total_parts}")

    parts = read_session_parts(blob_store, session_id, total_parts)
    merged = b"".join(parts)

    blob_store.upload(final_path, merged, content_type=content_type, upsert=True)
    logger.info(
        "Merged session_id=%s parts=%d bytes=%d into %s",
        session_id,
        total_parts,
        len(merged),
        final_path,
    )

    if schedule_cleanup is None:
        schedule_cleanup = _enqueue_cleanup_safe
    try:
        schedule_cleanup(session_id, total_parts)
    except Exception:
        logger.warning(
            "Failed to schedule chunk cleanup for session_id=%s (non-fatal)",
            session_id,
            exc_info=True,
        )

    return blob_store.get_public_url(final_path)


def cleanup_chunks(blob_store: BlobStore, session_id: str, total_parts: int) -> int:
    """Delete temp chunks 0..total_parts-1 of a session.

    Returns:
        Number of chunks removed.
    """
    paths = [chunk_key(session_id, part_number) for part_number in range(total_parts)]
    removed = blob_store.remove(paths)
    logger.info("Removed %d/%d temp chunks for session_id=%s", removed, total_parts, session_id)
    return removed


def sweep_orphan_chunks(
    blob_store: BlobStore,
    max_age_seconds: int,
    now: datetime | None = None,
) -> int:
    """Remove temp chunks older than max_age_seconds.

    Catches chunks whose post-merge cleanup failed and sessions that were
    never merged. A failure on one object is logged and the sweep continues.

    Args:
        blob_store: Blob store to sweep.
        max_age_seconds: Minimum age of a chunk to be removed.
        now: Reference time (defaults to current UTC time).

    Returns:
        Number of chunks removed.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(seconds=max_age_seconds)
    removed = 0

    for info in blob_store.list(f"{TEMP_PREFIX}/"):
        if info.modified_at >= cutoff:
            continue
        try:
            removed += blob_store.remove([info.path])
        except StorageFault:
            logger.warning("Failed to remove orphan chunk %s", info.path, exc_info=True)

    if removed > 0:
        logger.info("Orphan sweep removed %d temp chunks older than %ds", removed, max_age_seconds)
    return removed


def _enqueue_cleanup_safe(session_id: str, total_parts: int) -> None:
    """Hand temp chunk deletion to the task queue, logging on failure."""
    try:
        from app.huey_app import enqueue_chunk_cleanup

        enqueue_chunk_cleanup(session_id, total_parts)
    except Exception:
        logger.warning(
            "Failed to enqueue chunk cleanup for session_id=%s (non-fatal)",
            session_id,
            exc_info=True,
        )
