"""Media Chunk Pipeline - Canonical blob keys and local paths.

Returns keys/Paths only. Does NOT create directories.
"""

import mimetypes
import re
from pathlib import Path

from app.config import ARTIFACT_PREFIX, EPHEMERAL_DIR, TEMP_PREFIX

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.\-]")


def sanitize_file_name(file_name: str) -> str:
    """Replace anything outside [a-zA-Z0-9.-] with underscores."""
    return _UNSAFE_CHARS.sub("_", file_name)


def chunk_prefix(session_id: str) -> str:
    """Get the temp prefix holding all chunks of a session.

    Returns:
        str: temp/{session_id}/
    """
    return f"{TEMP_PREFIX}/{session_id}/"


def chunk_key(session_id: str, part_number: int) -> str:
    """Get the blob key for one chunk.

    Returns:
        str: temp/{session_id}/{part_number}
    """
    return f"{chunk_prefix(session_id)}{part_number}"


def artifact_key(user_id: str, file_name: str, timestamp_ms: int) -> str:
    """Get the blob key for a merged artifact.

    Args:
        user_id: Owning user.
        file_name: Client-supplied file name (sanitized here).
        timestamp_ms: Merge time in epoch milliseconds, keeps keys unique per upload.

    Returns:
        str: audio_files/{user_id}/{timestamp_ms}_{file_name}
    """
    user = sanitize_file_name(user_id)
    return f"{ARTIFACT_PREFIX}/{user}/{timestamp_ms}_{sanitize_file_name(file_name)}"


def extension_for_mime_type(mime_type: str) -> str:
    """Best-effort file extension (no dot) for a MIME type."""
    guessed = mimetypes.guess_extension(mime_type or "")
    if guessed:
        return guessed.lstrip(".")
    # Fall back to the subtype, e.g. "audio/mp3" -> "mp3"
    subtype = (mime_type or "").split("/")[-1].split(";")[0].strip()
    return sanitize_file_name(subtype) or "bin"


def ephemeral_asset_path(record_id: str, mime_type: str) -> Path:
    """Get the local scratch path used while handing a record to the provider.

    Returns:
        Path: data/ephemeral/audio-{record_id}.{ext}
    """
    return EPHEMERAL_DIR / f"audio-{record_id}.{extension_for_mime_type(mime_type)}"
