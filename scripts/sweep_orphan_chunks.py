#!/usr/bin/env python3
"""Remove temp upload chunks that were never merged or never cleaned up.

Runs the same reconciliation sweep the Huey consumer schedules hourly, against
the blob store selected by CHUNKPIPE_BLOB_BACKEND. Useful from cron when no
consumer is running, or to clear a backlog with a shorter max age.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from app.blob_store import build_blob_store
from app.chunks import sweep_orphan_chunks
from app.config import BLOB_BACKEND, BLOB_DIR, ORPHAN_CHUNK_MAX_AGE_SECONDS, PUBLIC_BASE_URL


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--max-age",
        type=int,
        default=ORPHAN_CHUNK_MAX_AGE_SECONDS,
        help="Minimum chunk age in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--blob-dir",
        default=str(BLOB_DIR),
        help="Blob store root for the filesystem backend (default: %(default)s)",
    )
    args = parser.parse_args(argv)
    if args.max_age < 0:
        parser.error("--max-age must be non-negative")
    return args


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = parse_args(argv)

    blob_store = build_blob_store(BLOB_BACKEND, args.blob_dir, PUBLIC_BASE_URL)
    removed = sweep_orphan_chunks(blob_store, args.max_age)
    print(f"Removed {removed} orphan chunk(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
