"""Tests for the processing orchestrator (app.orchestrator)."""

from unittest.mock import patch

import pytest

from app import orchestrator
from app.analysis_provider import AssetHandle, AssetState
from app.errors import (
    AssetProcessingFailedError,
    PipelineErrorCode,
    ProviderFault,
    ProviderTimeoutError,
)
from app.orchestrator import process_record, wait_until_ready
from app.records import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING_ANALYZING,
    STATUS_PROCESSING_UPLOAD,
    STATUS_QUEUED,
    create_record,
    get_record,
    load_result,
    update_status,
)

ARTIFACT_KEY = "audio_files/u1/1700000000000_call.mp3"


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def queued_record(runtime):
    """A record at status=queued whose artifact is in the blob store.

    Returns:
        tuple: (record_id, file_url)
    """
    runtime.blob_store.upload(ARTIFACT_KEY, b"merged-audio-bytes")
    file_url = runtime.blob_store.get_public_url(ARTIFACT_KEY)

    session = runtime.session_factory()
    try:
        record = create_record(session, "u1", "call.mp3")
        update_status(session, record.record_id, STATUS_QUEUED, file_url=file_url, file_size=18)
        return record.record_id, file_url
    finally:
        session.close()


def _load(runtime, record_id):
    session = runtime.session_factory()
    try:
        return get_record(session, record_id)
    finally:
        session.close()


def _recording_update_status(seen):
    """Wrap update_status so every status written is appended to seen."""

    def wrapper(session, record_id, status, *args, **kwargs):
        seen.append(status)
        return update_status(session, record_id, status, *args, **kwargs)

    return wrapper


class TestWaitUntilReady:
    """Tests for readiness polling with bounded exponential backoff."""

    HANDLE = AssetHandle(name="files/x", uri="https://p/files/x", mime_type="audio/mpeg")

    def test_ready_on_first_check_does_not_sleep(self, make_provider):
        provider = make_provider(states=["ready"])
        clock = FakeClock()

        state = wait_until_ready(provider, self.HANDLE, 2.0, 30.0, 600.0, clock.sleep, clock)

        assert state.is_ready
        assert clock.sleeps == []

    def test_delays_double_up_to_cap(self, make_provider):
        """Delays go 2, 4, 8, 16, 30, 30 ... between checks."""
        provider = make_provider(states=["processing"] * 7 + ["ready"])
        clock = FakeClock()

        wait_until_ready(provider, self.HANDLE, 2.0, 30.0, 600.0, clock.sleep, clock)

        assert clock.sleeps == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0]
        assert provider.state_checks == 8

    def test_failed_state_raises(self, make_provider):
        provider = make_provider(states=["processing", "failed"])
        clock = FakeClock()

        with pytest.raises(AssetProcessingFailedError) as exc_info:
            wait_until_ready(provider, self.HANDLE, 2.0, 30.0, 600.0, clock.sleep, clock)

        assert exc_info.value.error_code == PipelineErrorCode.ASSET_PROCESSING_FAILED

    def test_times_out_without_sleeping_past_deadline(self, make_provider):
        """A never-ready asset raises ProviderTimeoutError at the deadline."""
        provider = make_provider(states=["processing"])
        clock = FakeClock()

        with pytest.raises(ProviderTimeoutError) as exc_info:
            wait_until_ready(provider, self.HANDLE, 2.0, 30.0, 45.0, clock.sleep, clock)

        assert exc_info.value.error_code == PipelineErrorCode.PROVIDER_TIMEOUT
        # 2 + 4 + 8 + 16 = 30, then only 15 seconds remain
        assert clock.sleeps == [2.0, 4.0, 8.0, 16.0, 15.0]
        assert clock.now == 45.0


class TestProcessRecord:
    """Tests for process_record."""

    def test_happy_path_status_sequence(self, runtime, queued_record):
        """Status moves queued -> processing_upload -> processing_analyzing -> completed."""
        record_id, file_url = queued_record
        seen = []

        with patch("app.orchestrator.update_status", side_effect=_recording_update_status(seen)):
            outcome = process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        assert outcome == {"status": STATUS_COMPLETED, "record_id": record_id}
        assert seen == [STATUS_PROCESSING_UPLOAD, STATUS_PROCESSING_ANALYZING, STATUS_COMPLETED]

        record = _load(runtime, record_id)
        assert record.status == STATUS_COMPLETED
        assert record.processed is True
        assert load_result(record) == "analysis text"

    def test_provider_receives_artifact_bytes(self, runtime, queued_record):
        """The downloaded artifact is what gets uploaded to the provider."""
        record_id, file_url = queued_record

        process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        uploaded = runtime.provider.uploaded[0]
        assert uploaded["data"] == b"merged-audio-bytes"
        assert uploaded["mime_type"] == "audio/mpeg"
        assert uploaded["display_name"] == f"Audio Record {record_id}"

    def test_generate_uses_analysis_prompt(self, runtime, queued_record):
        from app.config import ANALYSIS_PROMPT

        record_id, file_url = queued_record

        process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        prompt, handle = runtime.provider.prompts[0]
        assert prompt == ANALYSIS_PROMPT
        assert handle.name == "files/fake-1"

    def test_ephemeral_file_removed(self, runtime, queued_record, ephemeral_dir):
        """The local scratch copy is gone after processing."""
        record_id, file_url = queued_record

        process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        assert runtime.provider.uploaded[0]["path"].parent == ephemeral_dir
        assert list(ephemeral_dir.glob("*")) == []

    def test_asset_processing_failed(self, runtime, queued_record, ephemeral_dir):
        """Provider reports failed -> record failed with an error payload."""
        record_id, file_url = queued_record
        runtime.provider.states = ["processing", "failed"]

        outcome = process_record(
            record_id, file_url, "audio/mpeg", runtime=runtime, sleep=lambda s: None
        )

        assert outcome["status"] == STATUS_FAILED
        record = _load(runtime, record_id)
        assert record.status == STATUS_FAILED
        assert record.processed is True
        result = load_result(record)
        assert result["error_code"] == PipelineErrorCode.ASSET_PROCESSING_FAILED
        assert result["error"]
        assert list(ephemeral_dir.glob("*")) == []

    def test_readiness_timeout(self, runtime, queued_record, monkeypatch):
        """A provider that never finishes ends in failed/PROVIDER_TIMEOUT."""
        record_id, file_url = queued_record
        runtime.provider.states = ["processing"]
        monkeypatch.setattr(orchestrator.config, "POLL_TIMEOUT_SECONDS", 10.0)
        clock = FakeClock()

        process_record(
            record_id, file_url, "audio/mpeg", runtime=runtime, sleep=clock.sleep, clock=clock
        )

        record = _load(runtime, record_id)
        assert record.status == STATUS_FAILED
        assert load_result(record)["error_code"] == PipelineErrorCode.PROVIDER_TIMEOUT
        assert sum(clock.sleeps) == 10.0

    def test_missing_artifact_fails_before_provider(self, runtime, queued_record):
        """A 404 on the artifact URL fails the record without touching the provider."""
        record_id, _ = queued_record
        missing_url = runtime.blob_store.get_public_url("audio_files/u1/missing.mp3")

        outcome = process_record(record_id, missing_url, "audio/mpeg", runtime=runtime)

        assert outcome["error_code"] == PipelineErrorCode.STORAGE_FAULT
        assert "Failed to fetch file" in outcome["error"]
        assert runtime.provider.uploaded == []
        record = _load(runtime, record_id)
        assert record.status == STATUS_FAILED
        assert load_result(record)["error_code"] == PipelineErrorCode.STORAGE_FAULT

    def test_generate_failure(self, runtime, queued_record):
        record_id, file_url = queued_record
        runtime.provider.generate_error = ProviderFault("quota exceeded")

        outcome = process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        assert outcome["error_code"] == PipelineErrorCode.PROVIDER_FAULT
        result = load_result(_load(runtime, record_id))
        assert result == {"error": "quota exceeded", "error_code": "PROVIDER_FAULT"}

    def test_unexpected_exception_becomes_internal_error(self, runtime, queued_record):
        record_id, file_url = queued_record
        runtime.provider.upload_error = RuntimeError("kaboom")

        outcome = process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        assert outcome["error_code"] == PipelineErrorCode.INTERNAL_ERROR
        assert load_result(_load(runtime, record_id))["error"] == "kaboom"

    def test_failure_to_mark_failed_is_swallowed(self, runtime, queued_record):
        """If even the failed status cannot be written, process_record still returns."""
        record_id, file_url = queued_record
        runtime.provider.upload_error = ProviderFault("down")

        with patch(
            "app.orchestrator.update_status",
            side_effect=_failing_after_first(update_status),
        ):
            outcome = process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        assert outcome["status"] == STATUS_FAILED
        assert _load(runtime, record_id).status == STATUS_PROCESSING_UPLOAD

    def test_uses_process_runtime_by_default(self, runtime, queued_record):
        record_id, file_url = queued_record

        outcome = process_record(record_id, file_url, "audio/mpeg")

        assert outcome["status"] == STATUS_COMPLETED

    def test_readiness_state_overrides_handle(self, runtime, queued_record):
        """URI and MIME type reported at readiness are used for generation."""
        record_id, file_url = queued_record
        runtime.provider.get_asset_state = lambda handle: AssetState(
            state="ready", uri="https://p/final", mime_type="audio/mp3"
        )

        process_record(record_id, file_url, "audio/mpeg", runtime=runtime)

        _, handle = runtime.provider.prompts[0]
        assert handle.uri == "https://p/final"
        assert handle.mime_type == "audio/mp3"


def _failing_after_first(real):
    """Wrap real so that only its first call succeeds."""
    calls = []

    def wrapper(*args, **kwargs):
        calls.append(args)
        if len(calls) > 1:
            raise RuntimeError("database unavailable")
        return real(*args, **kwargs)

    return wrapper


class TestProcessRecordTask:
    """Tests for the Huey task wrapper."""

    def test_task_runs_orchestrator(self, runtime, queued_record):
        from app.huey_app import process_record_task

        record_id, file_url = queued_record

        result = process_record_task(record_id, file_url, "audio/mpeg")

        # Immediate mode returns a Result handle
        assert result() == {"status": STATUS_COMPLETED, "record_id": record_id}
        assert _load(runtime, record_id).status == STATUS_COMPLETED
