"""Media Chunk Pipeline - Atomic I/O utilities.

Atomic publish rule:
1. Write to temp path in same directory
2. Flush + best-effort fsync
3. Rename temp -> final (the publish boundary)

The final path either contains complete data or does not exist. Concurrent
writers to one path each publish a complete file; the last rename wins.
"""

import os
import re
import uuid
from pathlib import Path

TEMP_SUFFIX = ".tmp"

# Names produced by atomic_write_bytes: "{final name}.{8 hex}.tmp"
_TEMP_NAME_RE = re.compile(r".+\.[0-9a-f]{8}" + re.escape(TEMP_SUFFIX))


def is_temp_file_name(name: str) -> bool:
    """Return True if name matches the temp naming used by atomic_write_bytes."""
    return _TEMP_NAME_RE.fullmatch(name) is not None


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, handling partial writes.

    Args:
        fd: File descriptor to write to.
        data: Bytes to write.

    Raises:
        OSError: If write fails or returns 0 bytes unexpectedly.
    """
    view = memoryview(data)
    total_written = 0

    while total_written < len(view):
        try:
            written = os.write(fd, view[total_written:])
        except InterruptedError:
            continue
        if written == 0:
            raise OSError("os.write() returned 0 bytes unexpectedly")
        total_written += written


def _fsync_directory(dir_path: Path) -> None:
    """Best-effort fsync on a directory for rename durability."""
    try:
        fd = os.open(dir_path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except (OSError, AttributeError):
        # O_DIRECTORY is not available everywhere
        pass


def atomic_write_bytes(final_path: str | Path, data: bytes) -> None:
    """Atomically write bytes to a file, replacing any existing content.

    Each call uses its own temp name, so concurrent writers never share a
    temp file.

    Args:
        final_path: The target path for the final file.
        data: Bytes to write.

    Raises:
        OSError: If directory creation, write, or rename fails.
    """
    final_path = Path(final_path)
    temp_path = final_path.with_name(f"{final_path.name}.{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}")

    final_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)
        os.fsync(fd)
    except OSError:
        os.close(fd)
        try:
            os.remove(temp_path)
        except OSError:
            pass
        raise
    else:
        os.close(fd)

    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)


def cleanup_orphan_temp_files(directory: str | Path) -> int:
    """Recursively remove orphan temp files left by interrupted writes.

    Only names matching the atomic_write_bytes temp pattern are removed;
    other files ending in .tmp are left alone.

    Args:
        directory: Directory to scan.

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    removed = 0

    if not directory.exists():
        return 0

    for temp_file in directory.rglob(f"*{TEMP_SUFFIX}"):
        if not temp_file.is_file() or not is_temp_file_name(temp_file.name):
            continue
        try:
            temp_file.unlink()
            removed += 1
        except OSError:
            pass

    return removed
