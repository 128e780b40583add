"""Media Chunk Pipeline - Runtime collaborators.

Holds the objects the API and queue workers share: database session factory,
blob store, analysis provider and outbound HTTP client. Built lazily from
app.config on first use in each process; tests replace it with
override_runtime().
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import sessionmaker

from app import config
from app.analysis_provider import AnalysisProvider, GeminiProvider
from app.blob_store import BlobStore, build_blob_store
from app.db import init_db

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Injected collaborators for one process."""

    session_factory: sessionmaker
    blob_store: BlobStore
    provider: AnalysisProvider
    http_client: httpx.Client


_runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def build_runtime() -> Runtime:
    """Create collaborators from configuration."""
    _, session_factory = init_db()
    http_client = httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS, follow_redirects=True)
    blob_store = build_blob_store(config.BLOB_BACKEND, config.BLOB_DIR, config.PUBLIC_BASE_URL)
    provider = GeminiProvider(
        api_key=config.GEMINI_API_KEY,
        model=config.GEMINI_MODEL,
        base_url=config.GEMINI_BASE_URL,
        client=http_client,
    )
    logger.info(
        "Runtime initialized (blob_backend=%s, model=%s)", config.BLOB_BACKEND, config.GEMINI_MODEL
    )
    return Runtime(
        session_factory=session_factory,
        blob_store=blob_store,
        provider=provider,
        http_client=http_client,
    )


def get_runtime() -> Runtime:
    """Return the process runtime, building it on first use."""
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = build_runtime()
    return _runtime


def override_runtime(runtime: Runtime | None) -> None:
    """Replace the process runtime (None resets to lazy construction)."""
    global _runtime
    _runtime = runtime
