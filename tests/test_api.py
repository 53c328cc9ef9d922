from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import inspect, select

from app.db.base import Base
from app.db.session import engine
from app.main import create_app
from app.models.processing_job import ProcessingJob
from app.services import cache
from app.services.audio import persister
from app.services.jobs import heartbeat, steps, tracking


def _upload(client, name="interview.m4a", content=b"fake audio bytes", **fields):
    data = {"user_id": "user-1", "company_id": "company-1", "staff_id": "staff-1", "file_id": "file-1"}
    data.update(fields)
    return client.post("/jobs", files={"file": (name, content, "audio/mp4")}, data=data)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_creates_pending_job_and_enqueues(client, enqueued):
    resp = _upload(client)

    assert resp.status_code == 202, resp.text
    job_id = resp.json()["job_id"]
    assert enqueued == [job_id]

    job_resp = client.get(f"/jobs/{job_id}")
    assert job_resp.status_code == 200
    body = job_resp.json()
    assert body["status"] == "pending"
    assert body["company_id"] == "company-1"
    assert body["steps"] == []
    assert body["chunks"] == []


def test_upload_rejects_unsupported_and_empty_files(client, enqueued):
    assert _upload(client, name="notes.txt").status_code == 400
    assert _upload(client, content=b"").status_code == 400
    assert enqueued == []


@pytest.mark.parametrize("company_id", ["../../escaped", "acme/../../escaped", "acme corp", ".."])
def test_upload_rejects_company_ids_that_are_not_plain_names(client, enqueued, company_id):
    resp = _upload(client, company_id=company_id)

    assert resp.status_code == 400
    assert enqueued == []
    assert not Path("escaped").exists()


def test_uploads_are_stored_under_the_company_directory(client, db):
    job_id = _upload(client, company_id="acme_01").json()["job_id"]

    saved = Path(tracking.get_job(db, job_id).local_file_path)
    assert saved.parent == Path("test_uploads").resolve() / "acme_01"
    assert saved.read_bytes() == b"fake audio bytes"


def test_upload_marks_job_failed_when_queue_is_down(client, db, monkeypatch):
    def broken_enqueue(job_id):
        raise ConnectionError("broker unreachable")

    monkeypatch.setattr("app.workers.tasks.enqueue_audio_job", broken_enqueue)

    resp = _upload(client)

    assert resp.status_code == 503
    job = db.scalars(select(ProcessingJob)).one()
    assert job.status == "failed"
    assert job.error_message == "broker unreachable"


def test_job_detail_includes_steps_and_chunks(client, db, make_job):
    job = make_job()
    heartbeat.acquire_job_lock(db, job.id)
    steps.initialize_steps(db, job.id)
    steps.skip_step(db, job.id, "convert", "Already in MP3 format")
    tracking.register_chunks(job.id, 2)
    tracking.update_chunk_status(job.id, 0, "completed", "secret words")

    body = client.get(f"/jobs/{job.id}").json()

    assert body["status"] == "processing"
    assert [s["step_name"] for s in body["steps"]] == steps.STEP_NAMES
    assert body["steps"][0]["status"] == "skipped"
    assert [c["status"] for c in body["chunks"]] == ["completed", "pending"]
    assert body["completed_chunks"] == 1
    assert "secret words" not in str(body)


def test_job_not_found(client):
    assert client.get("/jobs/missing").status_code == 404
    assert client.get("/jobs/missing/heartbeat").status_code == 404
    assert client.post("/jobs/missing/retry").status_code == 404


def test_heartbeat_endpoint(client, db, make_job):
    job = make_job()
    heartbeat.acquire_job_lock(db, job.id)

    body = client.get(f"/jobs/{job.id}/heartbeat").json()

    assert body["status"] == "processing"
    assert body["attempts"] == 1
    assert body["seconds_until_timeout"] > 0


def test_retry_endpoint(client, db, make_job, enqueued):
    job = make_job()
    assert client.post(f"/jobs/{job.id}/retry").status_code == 409

    heartbeat.acquire_job_lock(db, job.id)
    heartbeat.end_job(db, job.id, "failed", "none", "WORKFLOW_FAILED: boom", "WORKFLOW_FAILED")

    resp = client.post(f"/jobs/{job.id}/retry")

    assert resp.status_code == 202
    assert resp.json()["status"] == "pending"
    assert enqueued == [job.id]


def test_record_endpoints(client, db, make_job, monkeypatch):
    job = make_job()
    payload = persister.RecordPayload(
        file_id="file-1",
        user_id="user-1",
        company_id="company-1",
        staff_id="staff-1",
        audio_file_path=job.local_file_path,
        stt_text="full transcript",
        work_content=["Sales"],
        quality_status="partial",
        success_rate=0.8,
        warnings=[{"code": "CHUNK_PROCESS_FAILED", "chunk_index": 4, "error": "timeout"}],
    )
    record_id = persister.complete_record_persistence(db, job.id, payload).record_id

    detail = client.get(f"/records/{record_id}")
    assert detail.status_code == 200
    assert detail.json()["stt"] == "full transcript"
    assert detail.json()["processing_warnings"][0]["chunk_index"] == 4

    stored = {}
    monkeypatch.setattr(cache, "cache_get", lambda key: stored.get(key))
    monkeypatch.setattr(cache, "cache_set", lambda key, value: stored.__setitem__(key, value))

    listing = client.get("/records", params={"company_id": "company-1"})
    assert listing.status_code == 200
    assert [r["id"] for r in listing.json()] == [record_id]
    assert list(stored) == ["records:company:company-1:limit=50:offset=0"]

    assert client.get("/records", params={"company_id": "company-2"}).json() == []

    assert client.get("/records/missing").status_code == 404


def test_app_startup_creates_tables():
    Base.metadata.drop_all(bind=engine)

    with TestClient(create_app()) as fresh_client:
        assert fresh_client.get("/health").status_code == 200

    assert "processing_jobs" in inspect(engine).get_table_names()
