"""Media Chunk Pipeline - External analysis provider.

AnalysisProvider is the collaborator contract used by the orchestrator:
- upload_asset(path, mime_type, display_name) -> AssetHandle
- get_asset_state(handle) -> AssetState
- generate(prompt, handle) -> str

GeminiProvider implements it against the Gemini REST API (Files API with the
resumable upload protocol, then models/{model}:generateContent) over httpx.
Every transport error, non-2xx response or malformed body becomes a
ProviderFault.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

from app.errors import ProviderFault

logger = logging.getLogger(__name__)

# Normalized readiness states
STATE_PROCESSING = "processing"
STATE_READY = "ready"
STATE_FAILED = "failed"

# Gemini file states -> normalized states. Unknown values count as processing.
_GEMINI_STATES = {
    "PROCESSING": STATE_PROCESSING,
    "STATE_UNSPECIFIED": STATE_PROCESSING,
    "ACTIVE": STATE_READY,
    "FAILED": STATE_FAILED,
}


@dataclass
class AssetHandle:
    """Remote reference to an uploaded asset."""

    name: str
    uri: str
    mime_type: str


@dataclass
class AssetState:
    """Readiness snapshot of an uploaded asset."""

    state: str
    uri: str
    mime_type: str

    @property
    def is_ready(self) -> bool:
        return self.state == STATE_READY

    @property
    def is_failed(self) -> bool:
        return self.state == STATE_FAILED


class AnalysisProvider(Protocol):
    """Collaborator contract for the third-party analysis service."""

    def upload_asset(self, path: Path, mime_type: str, display_name: str) -> AssetHandle: ...

    def get_asset_state(self, handle: AssetHandle) -> AssetState: ...

    def generate(self, prompt: str, handle: AssetHandle) -> str: ...


class GeminiProvider:
    """AnalysisProvider backed by the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        client: httpx.Client | None = None,
        timeout: float = 120.0,
    ):
        if not api_key:
            logger.warning("Gemini API key is not configured; provider calls will fail")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"x-goog-api-key": self.api_key}
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderFault(
                f"Gemini request failed ({e.response.status_code}): {e.response.text[:500]}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderFault(f"Gemini request failed: {e}") from e
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderFault(f"Gemini returned a non-JSON body: {response.text[:200]}") from e
        if not isinstance(body, dict):
            raise ProviderFault("Gemini returned an unexpected JSON body")
        return body

    def upload_asset(self, path: Path, mime_type: str, display_name: str) -> AssetHandle:
        """Upload a local file using the resumable protocol (start, then upload+finalize)."""
        data = Path(path).read_bytes()

        start = self._request(
            "POST",
            f"{self.base_url}/upload/v1beta/files",
            headers=self._headers(
                {
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "start",
                    "X-Goog-Upload-Header-Content-Length": str(len(data)),
                    "X-Goog-Upload-Header-Content-Type": mime_type,
                }
            ),
            json={"file": {"display_name": display_name}},
        )
        upload_url = start.headers.get("x-goog-upload-url")
        if not upload_url:
            raise ProviderFault("Gemini did not return an upload URL")

        finished = self._request(
            "POST",
            upload_url,
            headers=self._headers(
                {
                    "X-Goog-Upload-Offset": "0",
                    "X-Goog-Upload-Command": "upload, finalize",
                }
            ),
            content=data,
        )
        file_info = self._json(finished).get("file")
        if not isinstance(file_info, dict) or not file_info.get("name"):
            raise ProviderFault("Gemini upload response is missing file metadata")

        handle = AssetHandle(
            name=file_info["name"],
            uri=file_info.get("uri", ""),
            mime_type=file_info.get("mimeType", mime_type),
        )
        logger.info("Uploaded asset %s (%d bytes) as %s", display_name, len(data), handle.name)
        return handle

    def get_asset_state(self, handle: AssetHandle) -> AssetState:
        body = self._json(
            self._request("GET", f"{self.base_url}/v1beta/{handle.name}", headers=self._headers())
        )
        raw_state = str(body.get("state", "STATE_UNSPECIFIED"))
        return AssetState(
            state=_GEMINI_STATES.get(raw_state, STATE_PROCESSING),
            uri=body.get("uri", handle.uri),
            mime_type=body.get("mimeType", handle.mime_type),
        )

    def generate(self, prompt: str, handle: AssetHandle) -> str:
        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {"file_data": {"mime_type": handle.mime_type, "file_uri": handle.uri}},
                    ]
                }
            ]
        }
        body = self._json(
            self._request(
                "POST",
                f"{self.base_url}/v1beta/models/{self.model}:generateContent",
                headers=self._headers(),
                json=payload,
            )
        )
        try:
            parts = body["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderFault("Gemini response has no candidate content") from e

        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text:
            raise ProviderFault("Gemini response contained no text")
        return text
