"""Shared pytest fixtures for Media Chunk Pipeline tests.

Common fixtures: temporary database, in-memory blob store, a scripted fake
analysis provider, an httpx client that serves artifact URLs from the blob
store, and a FastAPI test client wired to all of them.
"""

import tempfile
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest
from fastapi.testclient import TestClient

from app.analysis_provider import AssetHandle, AssetState
from app.blob_store import InMemoryBlobStore
from app.db import init_db
from app.errors import BlobNotFoundError
from app.huey_app import huey
from app.runtime import Runtime, override_runtime

PUBLIC_BASE_URL = "http://testserver/files"


class FakeProvider:
    """Scripted AnalysisProvider.

    Readiness states are returned in order; the last one repeats.
    """

    def __init__(
        self,
        states=("ready",),
        text="analysis text",
        upload_error=None,
        generate_error=None,
    ):
        self.states = list(states)
        self.text = text
        self.upload_error = upload_error
        self.generate_error = generate_error
        self.uploaded = []
        self.state_checks = 0
        self.prompts = []

    def upload_asset(self, path, mime_type, display_name):
        if self.upload_error is not None:
            raise self.upload_error
        self.uploaded.append(
            {
                "path": Path(path),
                "data": Path(path).read_bytes(),
                "mime_type": mime_type,
                "display_name": display_name,
            }
        )
        name = f"files/fake-{len(self.uploaded)}"
        return AssetHandle(name=name, uri=f"https://provider.invalid/{name}", mime_type=mime_type)

    def get_asset_state(self, handle):
        index = min(self.state_checks, len(self.states) - 1)
        self.state_checks += 1
        return AssetState(state=self.states[index], uri=handle.uri, mime_type=handle.mime_type)

    def generate(self, prompt, handle):
        self.prompts.append((prompt, handle))
        if self.generate_error is not None:
            raise self.generate_error
        return self.text


def make_blob_http_client(blob_store):
    """httpx client whose GET /files/{key} is answered from the blob store."""
    prefix = "/files/"

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if not path.startswith(prefix):
            return httpx.Response(404)
        try:
            return httpx.Response(200, content=blob_store.download(unquote(path[len(prefix):])))
        except BlobNotFoundError:
            return httpx.Response(404, text="not found")

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def huey_immediate():
    """Run queued tasks inline (in-memory storage) for every test."""
    previous = huey.immediate
    huey.immediate = True
    yield huey
    huey.immediate = previous


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def blob_store():
    """Fresh in-memory blob store."""
    return InMemoryBlobStore(PUBLIC_BASE_URL)


@pytest.fixture
def make_provider():
    """Factory for scripted providers, e.g. make_provider(states=["processing", "ready"])."""
    return FakeProvider


@pytest.fixture
def fake_provider():
    """Provider that reports ready on the first check."""
    return FakeProvider()


@pytest.fixture
def ephemeral_dir(monkeypatch, tmp_path):
    """Point ephemeral provider-upload files at a temp directory."""
    import app.utils.paths as paths

    target = tmp_path / "ephemeral"
    monkeypatch.setattr(paths, "EPHEMERAL_DIR", target)
    return target


@pytest.fixture
def runtime(temp_db, blob_store, fake_provider, ephemeral_dir):
    """Install a Runtime built from the test collaborators.

    Yields:
        Runtime
    """
    _, _, SessionFactory = temp_db
    http_client = make_blob_http_client(blob_store)
    rt = Runtime(
        session_factory=SessionFactory,
        blob_store=blob_store,
        provider=fake_provider,
        http_client=http_client,
    )
    override_runtime(rt)
    yield rt
    override_runtime(None)
    http_client.close()


@pytest.fixture
def client(runtime):
    """Create a FastAPI test client bound to the test runtime.

    Yields:
        tuple: (test_client, runtime)
    """
    from services.upload_api.main import app

    with TestClient(app) as test_client:
        yield test_client, runtime

