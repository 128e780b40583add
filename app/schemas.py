"""Media Chunk Pipeline - Pydantic models for API validation.

Request models are validated once at the HTTP boundary; handlers receive
typed, defaulted fields instead of picking optional values out of the body.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.config import DEFAULT_MIME_TYPE, SESSION_ID_MAX_LENGTH


# --- Request Models ---


class MergeRequest(BaseModel):
    """Request payload for merging an upload session."""

    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(
        ...,
        min_length=1,
        max_length=SESSION_ID_MAX_LENGTH,
        description="Upload session whose chunks are merged",
    )
    total_parts: int = Field(
        ...,
        ge=1,
        description="Exact number of chunks the client uploaded (parts 0..N-1)",
    )
    file_name: str = Field(..., min_length=1, max_length=255, description="Original file name")
    user_id: str = Field(..., min_length=1, max_length=64, description="Owning user ID")
    file_type: str = Field(
        default=DEFAULT_MIME_TYPE,
        min_length=1,
        description="MIME type of the merged artifact",
    )


# --- Response Models ---


class ChunkUploadResponse(BaseModel):
    """Response for a stored chunk."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="success", description="Operation status")
    session_id: str = Field(..., description="Upload session ID")
    part_number: int = Field(..., ge=0, description="Stored part number")


class MergeResponse(BaseModel):
    """Response for a merged session whose processing has been queued."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="success", description="Operation status")
    record_id: str = Field(..., description="Record tracking the processing job")
    file_url: str = Field(..., description="Public URL of the merged artifact")
    message: str = Field(
        default="Merge complete, processing started",
        description="Human-readable summary",
    )


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error taxonomy code")
    error_message: str = Field(..., description="Human-readable error description")


class RecordResponse(BaseModel):
    """Read-only view of an analysis record."""

    model_config = ConfigDict(extra="forbid")

    record_id: str = Field(..., description="Record identifier")
    user_id: str = Field(..., description="Owning user ID")
    file_name: str = Field(..., description="Original file name")
    file_url: str = Field(..., description="Public URL of the merged artifact")
    file_size: int = Field(..., ge=0, description="Artifact size in bytes")
    status: str = Field(..., description="Current processing status")
    processed: bool = Field(..., description="True once a result payload is stored")
    result: Any = Field(default=None, description="Analysis text or error payload")
    created_at: datetime = Field(..., description="When the record was created")
    updated_at: datetime = Field(..., description="Last modification time")


__all__ = [
    "MergeRequest",
    "ChunkUploadResponse",
    "MergeResponse",
    "ErrorResponse",
    "RecordResponse",
]
