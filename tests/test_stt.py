import threading
import time

import httpx
import openai
import pytest

from app.core.config import get_settings
from app.services import external
from app.services.audio import stt
from app.services.audio.errors import TranscriptionError
from app.services.audio.types import Chunk, ChunkResult


class Recorder:
    def __init__(self):
        self.lock = threading.Lock()
        self.calls = []

    def __call__(self, *args):
        with self.lock:
            self.calls.append(args)


def _chunks(count):
    return [Chunk(i, f"/tmp/chunk_{i}.mp3", i * 180.0, (i + 1) * 180.0, 180.0) for i in range(count)]


def test_merge_results_uses_index_order_not_completion_order():
    results = [
        ChunkResult(2, True, "third"),
        ChunkResult(0, True, "first"),
        ChunkResult(3, False, error="timeout"),
        ChunkResult(1, True, "second"),
    ]

    assert stt.merge_results(results) == "first\nsecond\nthird"


def test_process_all_chunks_isolates_failures_and_orders_results(monkeypatch):
    def fake_transcribe(job_id, chunk_path):
        index = int(chunk_path.rsplit("_", 1)[1].split(".")[0])
        # Earlier chunks finish last.
        time.sleep(0.01 * (5 - index))
        if index in {1, 3}:
            raise TranscriptionError("STT_UPLOAD_FAILED: 500", code="STT_UPLOAD_FAILED")
        return f"text {index}"

    monkeypatch.setattr(stt, "transcribe_chunk", fake_transcribe)
    chunk_status = Recorder()
    job_status = Recorder()

    results = stt.process_all_chunks("job-1", _chunks(5), chunk_status, job_status)

    assert [r.index for r in results] == [0, 1, 2, 3, 4]
    assert [r.success for r in results] == [True, False, True, False, True]
    assert results[1].error == "STT_UPLOAD_FAILED: 500"
    assert stt.merge_results(results) == "text 0\ntext 2\ntext 4"

    final_statuses = {call[1]: call[2] for call in chunk_status.calls if call[2] != "processing"}
    assert final_statuses == {0: "completed", 1: "failed", 2: "completed", 3: "failed", 4: "completed"}

    progress = [call[2] for call in job_status.calls]
    assert progress == sorted(progress)
    assert progress[-1] == 85
    assert job_status.calls[-1][3] == "Transcribing (5/5)"


def test_process_all_chunks_respects_concurrency_cap(monkeypatch):
    monkeypatch.setattr(get_settings(), "chunk_concurrency", 2)
    active = 0
    peak = 0
    lock = threading.Lock()

    def fake_transcribe(job_id, chunk_path):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return "ok"

    monkeypatch.setattr(stt, "transcribe_chunk", fake_transcribe)

    stt.process_all_chunks("job-1", _chunks(6), Recorder(), Recorder())

    assert peak <= 2


def test_quality_complete_and_partial():
    complete = stt.calculate_quality("job-1", [ChunkResult(i, True, "t") for i in range(4)], 4)
    assert complete.success_rate == 1.0
    assert complete.quality_status == "complete"
    assert complete.meets_threshold is True
    assert complete.warnings == []

    results = [ChunkResult(i, i not in {3, 7}, "t" if i not in {3, 7} else "", None if i not in {3, 7} else "boom") for i in range(10)]
    partial = stt.calculate_quality("job-1", results, 10)
    assert partial.success_rate == pytest.approx(0.8)
    assert partial.quality_status == "partial"
    assert partial.meets_threshold is True
    assert [w["chunk_index"] for w in partial.warnings] == [3, 7]
    assert all(w["code"] == "CHUNK_PROCESS_FAILED" for w in partial.warnings)


def test_quality_below_threshold():
    results = [ChunkResult(i, i < 4, "t" if i < 4 else "") for i in range(10)]

    report = stt.calculate_quality("job-1", results, 10)

    assert report.success_rate == pytest.approx(0.4)
    assert report.meets_threshold is False
    assert len(report.failed_chunks) == 6


def test_quality_with_no_chunks_never_meets_threshold():
    report = stt.calculate_quality("job-1", [], 0)

    assert report.success_rate == 0.0
    assert report.meets_threshold is False


def _status_error(code):
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    response = httpx.Response(code, request=request)
    return openai.APIStatusError(f"status {code}", response=response, body=None)


def test_call_with_retry_retries_transient_statuses():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise _status_error(503)
        return "done"

    assert external.call_with_retry(flaky, job_id="job-1", operation="upload", label="test") == "done"
    assert len(attempts) == 3


def test_call_with_retry_fails_fast_on_client_errors():
    attempts = []

    def bad_request():
        attempts.append(1)
        raise _status_error(400)

    with pytest.raises(openai.APIStatusError):
        external.call_with_retry(bad_request, job_id="job-1", operation="upload", label="test")
    assert len(attempts) == 1
    assert external.categorize_error(_status_error(400), "upload") == "STT_UPLOAD_FAILED"


def test_backoff_is_exponential():
    assert external.backoff_delay(1, 2000) == 2.0
    assert external.backoff_delay(2, 2000) == 4.0
    assert external.backoff_delay(3, 2000) == 8.0
