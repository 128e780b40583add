"""Media Chunk Pipeline - Per-session merge lock.

Serializes merges for one upload session. Two concurrent merges for the
same session would duplicate work and race on temp chunk cleanup, so the
second caller is rejected with MergeInProgressError.

TTL reclamation: a lock whose expires_at has passed belongs to a merge that
crashed or hung, and is replaced by the next acquirer.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.db import create_merge_lock
from app.errors import MergeInProgressError
from app.models import MergeLock, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def generate_holder_id() -> str:
    """Generate an identifier for a lock holder."""
    return f"merge-{uuid.uuid4().hex[:8]}"


def find_merge_lock(session: Session, session_id: str) -> MergeLock | None:
    """Find the lock row for a session, if any."""
    stmt = select(MergeLock).where(MergeLock.session_id == session_id)
    return session.execute(stmt).scalar_one_or_none()


def acquire_merge_lock(
    session: Session,
    session_id: str,
    holder_id: str,
    ttl_seconds: int | None = None,
) -> MergeLock:
    """Acquire the merge lock for a session, committing on success.

    Args:
        session: Database session.
        session_id: The upload session to lock.
        holder_id: Identifier of the acquiring merge.
        ttl_seconds: Optional TTL override.

    Returns:
        The acquired MergeLock.

    Raises:
        MergeInProgressError: If an unexpired lock is held by someone else.
    """
    existing = find_merge_lock(session, session_id)

    if existing is not None:
        # SQLite returns naive datetimes; stored values are UTC
        expires_at = existing.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at > utc_now():
            logger.info(
                "Merge lock for session_id=%s held by %s, rejecting",
                session_id,
                existing.holder_id,
            )
            raise MergeInProgressError(session_id)

        logger.warning(
            "Reclaiming stale merge lock for session_id=%s (holder=%s, expired at %s)",
            session_id,
            existing.holder_id,
            existing.expires_at,
        )
        session.delete(existing)
        session.flush()

    try:
        lock = create_merge_lock(session, session_id, holder_id, ttl_seconds=ttl_seconds)
        session.commit()
    except IntegrityError as e:
        # Lost the insert race against a concurrent merge
        session.rollback()
        raise MergeInProgressError(session_id) from e

    logger.debug("Acquired merge lock for session_id=%s (holder=%s)", session_id, holder_id)
    return lock


def release_merge_lock(session: Session, session_id: str, holder_id: str) -> bool:
    """Release the merge lock if it is still held by holder_id.

    Commits the deletion. A lock that was reclaimed by another holder is
    left alone.

    Returns:
        True if a lock was deleted.
    """
    lock = find_merge_lock(session, session_id)
    if lock is None or lock.holder_id != holder_id:
        return False
    session.delete(lock)
    session.commit()
    return True
