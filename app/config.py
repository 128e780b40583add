"""Media Chunk Pipeline - Configuration constants.

Module-level settings with environment overrides (CHUNKPIPE_* variables).
All paths are relative to the repository root by default.
"""

import os
from pathlib import Path

# Repository root (parent of app/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_str(name: str, default: str) -> str:
    """Get a string setting from the environment, falling back to default."""
    env_val = os.environ.get(name)
    if env_val:
        return env_val
    return default


def _get_positive_float(name: str, default: float) -> float:
    """Get a positive number from the environment or use default.

    Non-numeric or non-positive values are ignored.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        The configured value.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = float(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_positive_int(name: str, default: int) -> int:
    """Integer variant of _get_positive_float."""
    return int(_get_positive_float(name, default))


# Data directories
DATA_DIR = Path(_get_str("CHUNKPIPE_DATA_DIR", str(REPO_ROOT / "data")))
BLOB_DIR = DATA_DIR / "blobs"
EPHEMERAL_DIR = DATA_DIR / "ephemeral"

# Database path
DB_PATH = DATA_DIR / "chunkpipe.db"

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# Blob store backend: "filesystem" (durable) or "memory" (dev/test only;
# requires the Huey consumer to share the API process)
BLOB_BACKEND = _get_str("CHUNKPIPE_BLOB_BACKEND", "filesystem")

# Base URL under which blob keys are publicly reachable.
# Defaults to the API's own /files route.
PUBLIC_BASE_URL = _get_str("CHUNKPIPE_PUBLIC_BASE_URL", "http://localhost:8000/files")

# Blob key layout
TEMP_PREFIX = "temp"
ARTIFACT_PREFIX = "audio_files"

# Merge lock TTL in seconds. A lock older than this is considered abandoned.
MERGE_LOCK_TTL_SECONDS = _get_positive_int("CHUNKPIPE_MERGE_LOCK_TTL_SEC", 300)

# Temp chunks older than this are removed by the reconciliation sweep (24h)
ORPHAN_CHUNK_MAX_AGE_SECONDS = _get_positive_int("CHUNKPIPE_ORPHAN_MAX_AGE_SEC", 86400)

# Readiness polling: 2s initial delay, doubling, capped, with an overall deadline
POLL_INITIAL_DELAY_SECONDS = _get_positive_float("CHUNKPIPE_POLL_INITIAL_DELAY_SEC", 2.0)
POLL_MAX_DELAY_SECONDS = _get_positive_float("CHUNKPIPE_POLL_MAX_DELAY_SEC", 30.0)
POLL_TIMEOUT_SECONDS = _get_positive_float("CHUNKPIPE_POLL_TIMEOUT_SEC", 600.0)

# Outbound HTTP timeout (artifact download, provider calls)
HTTP_TIMEOUT_SECONDS = _get_positive_float("CHUNKPIPE_HTTP_TIMEOUT_SEC", 120.0)

# Analysis provider (Gemini REST API)
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY") or ""
GEMINI_MODEL = _get_str("CHUNKPIPE_GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_BASE_URL = _get_str(
    "CHUNKPIPE_GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
)

# Longest accepted upload session id (chunk keys, merge requests, merge_locks column)
SESSION_ID_MAX_LENGTH = 128

# MIME type used when the client does not send one
DEFAULT_MIME_TYPE = "audio/mp3"

# Fixed analysis instruction sent with every asset
ANALYSIS_PROMPT = (
    "Analyze this audio. Provide a summary, key topics, and sentiment analysis. Return JSON."
)
