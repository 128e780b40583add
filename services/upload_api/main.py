"""Media Chunk Pipeline - Upload API FastAPI application.

Endpoints:
- POST /v1/uploads/chunk: store one chunk of an upload session
- POST /v1/uploads/merge: merge a session, create its record, queue processing
- GET  /v1/records/{record_id}: read a record's status and result
- GET  /files/{key}: serve stored blobs (target of public artifact URLs)

Merge returns as soon as the record is queued; analysis runs in the Huey
consumer and is observed through the record.

Run with:
    uvicorn services.upload_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.blob_store import BlobStore
from app.chunks import upload_chunk
from app.errors import (
    BlobNotFoundError,
    PipelineError,
    PipelineErrorCode,
    ValidationError,
)
from app.records import get_record, load_result
from app.runtime import get_runtime
from app.schemas import (
    ChunkUploadResponse,
    ErrorResponse,
    MergeRequest,
    MergeResponse,
    RecordResponse,
)
from services.upload_api.service import merge_and_queue

logger = logging.getLogger(__name__)


# --- Dependencies ---


def get_db_session():
    """Dependency that provides a database session."""
    SessionFactory = get_runtime().session_factory
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


def get_blob_store() -> BlobStore:
    """Dependency that provides the configured blob store."""
    return get_runtime().blob_store


# --- Lifespan ---


def _startup_cleanup_safe() -> None:
    """Remove interrupted-write temp files and stale chunks (best-effort).

    Never crashes startup.
    """
    from app.blob_store import FilesystemBlobStore
    from app.chunks import sweep_orphan_chunks
    from app.config import ORPHAN_CHUNK_MAX_AGE_SECONDS
    from app.utils.atomic_io import cleanup_orphan_temp_files

    try:
        blob_store = get_runtime().blob_store
        if isinstance(blob_store, FilesystemBlobStore):
            cleaned = cleanup_orphan_temp_files(blob_store.root)
            if cleaned > 0:
                logger.info("Startup cleanup: removed %d orphan temp files", cleaned)
        sweep_orphan_chunks(blob_store, ORPHAN_CHUNK_MAX_AGE_SECONDS)
    except Exception:
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Builds the runtime collaborators on startup and cleans up leftovers.
    """
    get_runtime()
    _startup_cleanup_safe()
    yield


# --- FastAPI App ---


app = FastAPI(
    title="Media Chunk Pipeline - Upload API",
    description="Chunked media upload, merge, and asynchronous analysis hand-off.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - VALIDATION_ERROR -> 400
    - CHUNK_MISSING, RECORD_NOT_FOUND -> 404
    - MERGE_IN_PROGRESS -> 409
    - everything else -> 500
    """
    if error_code == PipelineErrorCode.VALIDATION_ERROR:
        return 400
    if error_code in (PipelineErrorCode.CHUNK_MISSING, PipelineErrorCode.RECORD_NOT_FOUND):
        return 404
    if error_code == PipelineErrorCode.MERGE_IN_PROGRESS:
        return 409
    return 500


def make_error_response(error_code: str, error_message: str, status_code: int | None = None):
    """Create a JSON error response."""
    return JSONResponse(
        status_code=status_code or error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=str(error_code),
            error_message=error_message,
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report missing/malformed request fields as 400 VALIDATION_ERROR."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    return make_error_response(
        PipelineErrorCode.VALIDATION_ERROR,
        "; ".join(problems) or "Invalid request",
    )


def _parse_part_number(raw: str | None) -> int:
    if raw is None or raw == "":
        raise ValidationError("part_number is required")
    try:
        part_number = int(raw)
    except ValueError as e:
        raise ValidationError(f"part_number must be an integer, got {raw!r}") from e
    if part_number < 0:
        raise ValidationError(f"part_number must be non-negative, got {part_number}")
    return part_number


# --- Endpoints ---


@app.post(
    "/v1/uploads/chunk",
    response_model=ChunkUploadResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing chunk, session_id or part_number"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
    summary="Upload one chunk",
    description="Store one byte-range chunk of an upload session. Re-uploads overwrite.",
)
async def upload_chunk_endpoint(
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    chunk: Annotated[UploadFile | None, File(description="Chunk bytes")] = None,
    session_id: Annotated[str | None, Form(description="Upload session ID")] = None,
    part_number: Annotated[str | None, Form(description="Zero-based part number")] = None,
):
    """Store one chunk.

    Accepts multipart form data with:
    - chunk: The chunk bytes (required, non-empty)
    - session_id: Upload session ID (required)
    - part_number: Zero-based part index (required)
    """
    try:
        if chunk is None:
            raise ValidationError("chunk is required")
        if not session_id:
            raise ValidationError("session_id is required")
        parsed_part = _parse_part_number(part_number)

        data = await chunk.read()
        upload_chunk(blob_store, session_id, parsed_part, data)
        return ChunkUploadResponse(session_id=session_id, part_number=parsed_part)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        logger.exception("Unexpected error during chunk upload")
        return make_error_response(
            PipelineErrorCode.INTERNAL_ERROR,
            "An unexpected error occurred during chunk upload",
        )


@app.post(
    "/v1/uploads/merge",
    response_model=MergeResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid merge request"},
        404: {"model": ErrorResponse, "description": "A chunk is missing"},
        409: {"model": ErrorResponse, "description": "Merge already in progress"},
        500: {"model": ErrorResponse, "description": "Merge failed"},
    },
    summary="Merge an upload session",
    description="Merge all chunks, create the record, and queue analysis.",
)
def merge_endpoint(
    request: MergeRequest,
    session: Annotated[Session, Depends(get_db_session)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
):
    """Merge an upload session and queue processing.

    Returns immediately after queueing; poll the record for the outcome.
    """
    try:
        result = merge_and_queue(session, blob_store, request)
        return MergeResponse(record_id=result.record_id, file_url=result.file_url)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        logger.exception("Unexpected error during merge of session_id=%s", request.session_id)
        return make_error_response(
            PipelineErrorCode.INTERNAL_ERROR,
            "An unexpected error occurred during merge",
        )


@app.get(
    "/v1/records/{record_id}",
    response_model=RecordResponse,
    responses={404: {"model": ErrorResponse, "description": "Record not found"}},
    summary="Get record status",
)
def get_record_endpoint(
    record_id: str,
    session: Annotated[Session, Depends(get_db_session)],
):
    """Read-only view of a record."""
    try:
        record = get_record(session, record_id)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    return RecordResponse(
        record_id=record.record_id,
        user_id=record.user_id,
        file_name=record.file_name,
        file_url=record.file_url,
        file_size=record.file_size,
        status=record.status,
        processed=record.processed,
        result=load_result(record),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@app.get("/files/{key:path}", summary="Download a stored blob")
def download_blob(
    key: str,
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
):
    """Serve a stored object by key."""
    try:
        info = blob_store.stat(key)
        data = blob_store.download(key)
    except BlobNotFoundError as e:
        return make_error_response(e.error_code, e.message, status_code=404)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    return Response(content=data, media_type=info.content_type)


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}
