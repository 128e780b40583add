"""Media Chunk Pipeline - Utility modules."""

from app.utils.atomic_io import atomic_write_bytes, cleanup_orphan_temp_files
from app.utils.paths import (
    artifact_key,
    chunk_key,
    chunk_prefix,
    ephemeral_asset_path,
    sanitize_file_name,
)

__all__ = [
    # atomic_io
    "atomic_write_bytes",
    "cleanup_orphan_temp_files",
    # paths
    "artifact_key",
    "chunk_key",
    "chunk_prefix",
    "ephemeral_asset_path",
    "sanitize_file_name",
]
