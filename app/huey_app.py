"""Media Chunk Pipeline - Huey task queue configuration.

Huey setup with SQLite backend. Detached work (record processing, temp chunk
cleanup, the orphan sweep) is handed to the queue so it survives the HTTP
response that triggered it.

How to run:
1. Start the upload API:
   uvicorn services.upload_api.main:app --reload

2. Start the Huey consumer (processes queued tasks, runs the periodic sweep):
   huey_consumer.py app.huey_app.huey -w 4

Set CHUNKPIPE_HUEY_IMMEDIATE=1 to execute tasks inline (development only;
the request then blocks until processing finishes).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from huey import SqliteHuey, crontab

from app.config import HUEY_DB_PATH, ORPHAN_CHUNK_MAX_AGE_SECONDS, QUEUE_DIR

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


_ensure_queue_dir()

huey = SqliteHuey(
    name="chunkpipe",
    filename=str(HUEY_DB_PATH),
    immediate=os.environ.get("CHUNKPIPE_HUEY_IMMEDIATE") == "1",
)


@huey.task()
def process_record_task(record_id: str, file_url: str, mime_type: str) -> dict:
    """Huey task running the processing orchestrator for one record.

    Args:
        record_id: The record to process.
        file_url: Public URL of the merged artifact.
        mime_type: MIME type of the artifact.

    Returns:
        Dict with the processing outcome (for logging/debugging).
    """
    # Import here to avoid circular imports
    from app.orchestrator import process_record

    logger.info("Process record task started for record_id=%s", record_id)
    result = process_record(record_id, file_url, mime_type)
    logger.info("Process record task finished for record_id=%s: %s", record_id, result["status"])
    return result


@huey.task()
def cleanup_chunks_task(session_id: str, total_parts: int) -> int:
    """Huey task deleting a merged session's temp chunks.

    Failures are logged and swallowed; leftovers are picked up by the sweep.
    """
    from app.chunks import cleanup_chunks
    from app.runtime import get_runtime

    try:
        return cleanup_chunks(get_runtime().blob_store, session_id, total_parts)
    except Exception:
        logger.warning(
            "Temp chunk cleanup failed for session_id=%s (left for sweep)",
            session_id,
            exc_info=True,
        )
        return 0


@huey.periodic_task(crontab(minute="0"))
def sweep_orphan_chunks_task() -> int:
    """Hourly reconciliation sweep over temp chunks."""
    from app.chunks import sweep_orphan_chunks
    from app.runtime import get_runtime

    return sweep_orphan_chunks(get_runtime().blob_store, ORPHAN_CHUNK_MAX_AGE_SECONDS)


def enqueue_record_processing(record_id: str, file_url: str, mime_type: str) -> None:
    """Enqueue processing for a record.

    Non-blocking: returns immediately even if the Huey consumer is not running.
    The task is persisted in SQLite and processed when the consumer starts.
    """
    logger.info("Enqueueing processing for record_id=%s", record_id)
    process_record_task(record_id, file_url, mime_type)


def enqueue_chunk_cleanup(session_id: str, total_parts: int) -> None:
    """Enqueue temp chunk deletion for a merged session."""
    logger.debug("Enqueueing chunk cleanup for session_id=%s (%d parts)", session_id, total_parts)
    cleanup_chunks_task(session_id, total_parts)
