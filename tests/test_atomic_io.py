"""Tests for app.utils.atomic_io module."""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from app.utils.atomic_io import TEMP_SUFFIX, atomic_write_bytes


class TestAtomicWriteBytes:
    """Tests for atomic_write_bytes function."""

    def test_creates_file(self):
        """Should create file with correct content."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bin"
            data = b"test binary data"

            atomic_write_bytes(path, data)

            assert path.exists()
            assert path.read_bytes() == data

    def test_creates_parent_directories(self):
        """Should create parent directories if they do not exist."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "audio_files" / "u1" / "1_call.mp3"

            atomic_write_bytes(path, b"merged")

            assert path.read_bytes() == b"merged"

    def test_overwrites_existing_file(self):
        """Should atomically replace existing file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bin"
            path.write_bytes(b"old content")

            atomic_write_bytes(path, b"new content")

            assert path.read_bytes() == b"new content"

    def test_no_temp_files_left_on_success(self):
        """No temp file should remain after a successful write."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bin"

            atomic_write_bytes(path, b"data")

            assert list(Path(tmpdir).glob(f"*{TEMP_SUFFIX}")) == []

    def test_unrelated_leftover_temp_does_not_block_write(self):
        """A leftover temp file from an interrupted write is not reused."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bin"
            leftover = Path(tmpdir) / f"test.bin.deadbeef{TEMP_SUFFIX}"
            leftover.write_bytes(b"orphaned temp data")

            atomic_write_bytes(path, b"fresh data")

            assert path.read_bytes() == b"fresh data"
            assert leftover.read_bytes() == b"orphaned temp data"

    def test_accepts_string_path(self):
        """Should accept string paths."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = str(Path(tmpdir) / "test.bin")
            atomic_write_bytes(path, b"data")
            assert Path(path).exists()

    def test_large_payload_written_completely(self):
        """Final file holds the full payload."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bin"
            data = b"x" * 1_000_000

            atomic_write_bytes(path, data)

            assert path.read_bytes() == data

    def test_empty_data(self):
        """Should handle empty data correctly."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "empty.bin"
            atomic_write_bytes(path, b"")
            assert path.read_bytes() == b""

    def test_failed_write_leaves_previous_content(self):
        """A write failure keeps the old file and removes the temp file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bin"
            path.write_bytes(b"previous")

            with patch("app.utils.atomic_io.os.fsync", side_effect=OSError("disk error")):
                with pytest.raises(OSError):
                    atomic_write_bytes(path, b"replacement")

            assert path.read_bytes() == b"previous"
            assert list(Path(tmpdir).glob(f"*{TEMP_SUFFIX}")) == []
