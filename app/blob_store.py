"""Media Chunk Pipeline - Blob store.

Keyed object storage used for temp chunks and merged artifacts.

Two implementations, selected by config.BLOB_BACKEND and injected at
startup through app.runtime:
- FilesystemBlobStore: durable, one file per key under BLOB_DIR, written
  with the atomic publish rule.
- InMemoryBlobStore: process-local dict, for development and tests.

All writes are upserts unless upsert=False is passed.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import quote

from app.errors import BlobNotFoundError, StorageFault
from app.utils.atomic_io import atomic_write_bytes, is_temp_file_name

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class BlobInfo:
    """Listing entry for a stored object."""

    path: str
    size: int
    modified_at: datetime
    content_type: str = DEFAULT_CONTENT_TYPE


def normalize_key(path: str) -> str:
    """Validate a blob key and return it in canonical form.

    Keys are relative POSIX paths; empty segments, "." and ".." are rejected.

    Raises:
        StorageFault: If the key is not a safe relative path.
    """
    if not path or path.startswith("/") or "\\" in path:
        raise StorageFault(f"Invalid blob key: {path!r}")
    parts = path.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise StorageFault(f"Invalid blob key: {path!r}")
    return path


class BlobStore(ABC):
    """Collaborator contract for durable keyed object storage."""

    def __init__(self, public_base_url: str):
        self.public_base_url = public_base_url.rstrip("/")

    @abstractmethod
    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        upsert: bool = True,
    ) -> str:
        """Store data under path. Returns the stored key."""

    @abstractmethod
    def download(self, path: str) -> bytes:
        """Return the bytes stored under path.

        Raises:
            BlobNotFoundError: If nothing is stored under path.
        """

    @abstractmethod
    def remove(self, paths: list[str]) -> int:
        """Delete the given keys. Missing keys are ignored. Returns count removed."""

    @abstractmethod
    def list(self, prefix: str = "") -> list[BlobInfo]:
        """List objects whose key starts with prefix."""

    @abstractmethod
    def stat(self, path: str) -> BlobInfo:
        """Return metadata for one key.

        Raises:
            BlobNotFoundError: If nothing is stored under path.
        """

    def get_public_url(self, path: str) -> str:
        """Resolve the URL at which a stored key can be fetched."""
        return f"{self.public_base_url}/{quote(normalize_key(path))}"


class InMemoryBlobStore(BlobStore):
    """Process-local blob store. Contents are lost when the process exits."""

    def __init__(self, public_base_url: str = "memory://blobs"):
        super().__init__(public_base_url)
        self._objects: dict[str, tuple[bytes, str, datetime]] = {}
        self._lock = threading.Lock()

    def upload(self, path, data, content_type=DEFAULT_CONTENT_TYPE, upsert=True):
        key = normalize_key(path)
        with self._lock:
            if not upsert and key in self._objects:
                raise StorageFault(f"Blob already exists: {key}")
            self._objects[key] = (bytes(data), content_type, datetime.now(UTC))
        return key

    def download(self, path):
        key = normalize_key(path)
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise BlobNotFoundError(key)
        return entry[0]

    def remove(self, paths):
        removed = 0
        with self._lock:
            for path in paths:
                if self._objects.pop(normalize_key(path), None) is not None:
                    removed += 1
        return removed

    def list(self, prefix=""):
        with self._lock:
            items = sorted(self._objects.items())
        return [
            BlobInfo(path=key, size=len(data), modified_at=modified_at, content_type=content_type)
            for key, (data, content_type, modified_at) in items
            if key.startswith(prefix)
        ]

    def stat(self, path):
        key = normalize_key(path)
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise BlobNotFoundError(key)
        data, content_type, modified_at = entry
        return BlobInfo(
            path=key, size=len(data), modified_at=modified_at, content_type=content_type
        )

    def touch(self, path: str, modified_at: datetime) -> None:
        """Override the modification time of a stored key."""
        key = normalize_key(path)
        with self._lock:
            data, content_type, _ = self._objects[key]
            self._objects[key] = (data, content_type, modified_at)


class FilesystemBlobStore(BlobStore):
    """Durable blob store: one file per key under a root directory."""

    def __init__(self, root: str | Path, public_base_url: str):
        super().__init__(public_base_url)
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        return self.root / normalize_key(path)

    def upload(self, path, data, content_type=DEFAULT_CONTENT_TYPE, upsert=True):
        key = normalize_key(path)
        target = self.root / key
        if not upsert and target.exists():
            raise StorageFault(f"Blob already exists: {key}")
        try:
            atomic_write_bytes(target, data)
        except OSError as e:
            raise StorageFault(f"Failed to write blob {key}: {e}") from e
        return key

    def download(self, path):
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(normalize_key(path)) from e
        except IsADirectoryError as e:
            raise BlobNotFoundError(normalize_key(path)) from e
        except OSError as e:
            raise StorageFault(f"Failed to read blob {path}: {e}") from e

    def remove(self, paths):
        removed = 0
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageFault(f"Failed to remove blob {path}: {e}") from e
            self._prune_empty_dirs(target.parent)
        return removed

    def _prune_empty_dirs(self, directory: Path) -> None:
        """Remove now-empty parent directories up to (not including) the root."""
        root = self.root.resolve()
        current = directory.resolve()
        while current != root and root in current.parents:
            try:
                current.rmdir()
            except OSError:
                return
            current = current.parent

    def _info(self, file_path: Path) -> BlobInfo:
        st = file_path.stat()
        key = file_path.relative_to(self.root).as_posix()
        content_type, _ = mimetypes.guess_type(file_path.name)
        return BlobInfo(
            path=key,
            size=st.st_size,
            modified_at=datetime.fromtimestamp(st.st_mtime, UTC),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )

    def list(self, prefix=""):
        if not self.root.exists():
            return []
        results = []
        for file_path in sorted(self.root.rglob("*")):
            if not file_path.is_file() or is_temp_file_name(file_path.name):
                continue
            key = file_path.relative_to(self.root).as_posix()
            if not key.startswith(prefix):
                continue
            try:
                results.append(self._info(file_path))
            except FileNotFoundError:
                # Removed between rglob and stat
                continue
        return results

    def stat(self, path):
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(normalize_key(path))
        return self._info(target)


def build_blob_store(backend: str, root: str | Path, public_base_url: str) -> BlobStore:
    """Create the blob store selected by configuration.

    Args:
        backend: "filesystem" or "memory".
        root: Root directory for the filesystem backend.
        public_base_url: Base URL used by get_public_url.

    Raises:
        ValueError: For an unknown backend name.
    """
    if backend == "filesystem":
        return FilesystemBlobStore(root, public_base_url)
    if backend == "memory":
        logger.warning("Using in-memory blob store; stored objects do not survive restarts")
        return InMemoryBlobStore(public_base_url)
    raise ValueError(f"Unknown blob store backend: {backend!r}")
