"""Media Chunk Pipeline - Processing orchestrator.

Runs one record through the external analysis provider. Executed inside a
Huey task, detached from the HTTP request that merged the upload.

Status progression:
    queued -> processing_upload -> processing_analyzing -> completed
Any exception along the way ends in:
    failed (result = {"error": message, "error_code": code})

Readiness polling uses bounded exponential backoff: the first delay is
POLL_INITIAL_DELAY_SECONDS, each following delay doubles up to
POLL_MAX_DELAY_SECONDS, and the whole wait gives up with ProviderTimeoutError
after POLL_TIMEOUT_SECONDS.

There is no caller to report to; the record is the only observable outcome.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from app import config
from app.errors import (
    AssetProcessingFailedError,
    PipelineError,
    PipelineErrorCode,
    ProviderTimeoutError,
    StorageFault,
)
from app.records import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING_ANALYZING,
    STATUS_PROCESSING_UPLOAD,
    update_status,
)
from app.utils.atomic_io import atomic_write_bytes
from app.utils.paths import ephemeral_asset_path

if TYPE_CHECKING:
    from app.analysis_provider import AnalysisProvider, AssetHandle, AssetState
    from app.runtime import Runtime

logger = logging.getLogger(__name__)


# --- Artifact Download ---


def download_artifact(http_client: httpx.Client, file_url: str) -> bytes:
    """Fetch the merged artifact from its public URL.

    Raises:
        StorageFault: On transport errors or non-2xx responses.
    """
    try:
        response = http_client.get(file_url)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise StorageFault(
            f"Failed to fetch file: {e.response.status_code} {e.response.reason_phrase}"
        ) from e
    except httpx.HTTPError as e:
        raise StorageFault(f"Failed to fetch file: {e}") from e
    return response.content


# --- Readiness Polling ---


def wait_until_ready(
    provider: AnalysisProvider,
    handle: AssetHandle,
    initial_delay: float,
    max_delay: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AssetState:
    """Poll the provider until the asset is ready.

    Checks once immediately, then sleeps initial_delay, 2*initial_delay, ...
    (capped at max_delay) between checks. Never sleeps past the deadline.

    Raises:
        AssetProcessingFailedError: If the provider reports the asset failed.
        ProviderTimeoutError: If the asset is not ready within timeout seconds.
    """
    started = clock()
    delay = initial_delay
    attempts = 0

    while True:
        state = provider.get_asset_state(handle)
        attempts += 1
        if state.is_ready:
            logger.info("Asset %s ready after %d checks", handle.name, attempts)
            return state
        if state.is_failed:
            raise AssetProcessingFailedError(handle.name)

        elapsed = clock() - started
        if elapsed >= timeout:
            raise ProviderTimeoutError(handle.name, elapsed)

        logger.debug("Asset %s still processing, next check in %.1fs", handle.name, delay)
        sleep(min(delay, timeout - elapsed))
        delay = min(delay * 2, max_delay)


# --- Record Processing ---


def process_record(
    record_id: str,
    file_url: str,
    mime_type: str,
    runtime: Runtime | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict:
    """Run one record through download, provider upload, polling and analysis.

    Never raises: every failure is written to the record as status=failed.
    A failure while writing that status is logged.

    Args:
        record_id: Record to process (must exist, normally status=queued).
        file_url: Public URL of the merged artifact.
        mime_type: MIME type of the artifact.
        runtime: Collaborators override (defaults to the process runtime).
        sleep: Sleep function used between readiness checks.
        clock: Monotonic clock used for the polling deadline.

    Returns:
        Dict describing the outcome (for logging/debugging).
    """
    if runtime is None:
        from app.runtime import get_runtime

        runtime = get_runtime()

    logger.info("Starting processing for record_id=%s", record_id)
    local_path = ephemeral_asset_path(record_id, mime_type)
    session = runtime.session_factory()

    try:
        _process_record_impl(
            session, runtime, record_id, file_url, mime_type, local_path, sleep, clock
        )
        return {"status": STATUS_COMPLETED, "record_id": record_id}
    except Exception as e:
        session.rollback()
        if isinstance(e, PipelineError):
            error_code, message = e.error_code, e.message
        else:
            error_code, message = PipelineErrorCode.INTERNAL_ERROR, str(e)
        logger.exception("Processing failed for record_id=%s (%s)", record_id, error_code)
        _mark_failed_safe(runtime, record_id, str(error_code), message)
        return {
            "status": STATUS_FAILED,
            "record_id": record_id,
            "error_code": str(error_code),
            "error": message,
        }
    finally:
        session.close()
        _remove_ephemeral_file(local_path)


def _process_record_impl(
    session,
    runtime: Runtime,
    record_id: str,
    file_url: str,
    mime_type: str,
    local_path,
    sleep: Callable[[float], None],
    clock: Callable[[], float],
) -> None:
    """Steps 1-6 of record processing. Raises on any failure."""
    # 1. Mark upload phase
    update_status(session, record_id, STATUS_PROCESSING_UPLOAD)

    # 2. Download merged artifact
    data = download_artifact(runtime.http_client, file_url)

    # 3. Stage locally and hand to provider
    try:
        atomic_write_bytes(local_path, data)
    except OSError as e:
        raise StorageFault(f"Failed to write ephemeral file {local_path}: {e}") from e

    handle = runtime.provider.upload_asset(local_path, mime_type, f"Audio Record {record_id}")
    logger.info("Record %s uploaded to provider as %s", record_id, handle.name)

    # 4. Wait for the provider to finish ingesting the asset
    state = wait_until_ready(
        runtime.provider,
        handle,
        initial_delay=config.POLL_INITIAL_DELAY_SECONDS,
        max_delay=config.POLL_MAX_DELAY_SECONDS,
        timeout=config.POLL_TIMEOUT_SECONDS,
        sleep=sleep,
        clock=clock,
    )
    handle.uri = state.uri or handle.uri
    handle.mime_type = state.mime_type or handle.mime_type

    # 5. Analyze
    update_status(session, record_id, STATUS_PROCESSING_ANALYZING)
    text = runtime.provider.generate(config.ANALYSIS_PROMPT, handle)

    # 6. Persist result
    update_status(session, record_id, STATUS_COMPLETED, text)
    logger.info("Analysis complete for record_id=%s (%d chars)", record_id, len(text))


def _mark_failed_safe(runtime: Runtime, record_id: str, error_code: str, message: str) -> None:
    """Write status=failed in a fresh session, logging if that fails too."""
    session = runtime.session_factory()
    try:
        update_status(
            session,
            record_id,
            STATUS_FAILED,
            {"error": message, "error_code": error_code},
        )
    except Exception:
        session.rollback()
        logger.exception("Could not record failure for record_id=%s", record_id)
    finally:
        session.close()


def _remove_ephemeral_file(local_path) -> None:
    try:
        local_path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to remove ephemeral file %s", local_path, exc_info=True)
