"""Media Chunk Pipeline - Error taxonomy.

Three families:
- ValidationError: client-fixable request problems (4xx, never retried)
- StorageFault: blob store / record store I/O failures
- ProviderFault: anything coming back from the analysis provider

Synchronous callers get these mapped to HTTP responses. Inside the detached
orchestration they are folded into a failed record.
"""

from __future__ import annotations

from enum import StrEnum


class PipelineErrorCode(StrEnum):
    """Error codes carried on exceptions, API error bodies and failed records."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    STORAGE_FAULT = "STORAGE_FAULT"
    CHUNK_MISSING = "CHUNK_MISSING"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    MERGE_IN_PROGRESS = "MERGE_IN_PROGRESS"
    PROVIDER_FAULT = "PROVIDER_FAULT"
    ASSET_PROCESSING_FAILED = "ASSET_PROCESSING_FAILED"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class ValidationError(PipelineError):
    """Missing or malformed request field."""

    def __init__(self, message: str):
        super().__init__(PipelineErrorCode.VALIDATION_ERROR, message)


class StorageFault(PipelineError):
    """I/O failure against the blob store or record store."""

    def __init__(self, message: str, error_code: str = PipelineErrorCode.STORAGE_FAULT):
        super().__init__(error_code, message)


class BlobNotFoundError(StorageFault):
    """Requested blob key does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Blob not found: {path}", PipelineErrorCode.STORAGE_FAULT)


class ChunkMissingError(StorageFault):
    """A part required by a merge is absent from temp storage."""

    def __init__(self, session_id: str, part_number: int):
        self.session_id = session_id
        self.part_number = part_number
        super().__init__(
            f"Chunk {part_number} missing for session {session_id}",
            PipelineErrorCode.CHUNK_MISSING,
        )


class RecordNotFoundError(StorageFault):
    """No record with the given id."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}", PipelineErrorCode.RECORD_NOT_FOUND)


class MergeInProgressError(PipelineError):
    """Another merge holds the lock for this session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            PipelineErrorCode.MERGE_IN_PROGRESS,
            f"A merge is already in progress for session {session_id}",
        )


class ProviderFault(PipelineError):
    """Failure reported by (or while talking to) the analysis provider."""

    def __init__(self, message: str, error_code: str = PipelineErrorCode.PROVIDER_FAULT):
        super().__init__(error_code, message)


class AssetProcessingFailedError(ProviderFault):
    """Provider reported the uploaded asset as failed."""

    def __init__(self, asset_name: str):
        self.asset_name = asset_name
        super().__init__(
            f"Provider failed to process asset {asset_name}",
            PipelineErrorCode.ASSET_PROCESSING_FAILED,
        )


class ProviderTimeoutError(ProviderFault):
    """Asset did not become ready before the polling deadline."""

    def __init__(self, asset_name: str, waited_seconds: float):
        self.asset_name = asset_name
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Asset {asset_name} not ready after {waited_seconds:.1f}s",
            PipelineErrorCode.PROVIDER_TIMEOUT,
        )
