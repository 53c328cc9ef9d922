import pytest

from app.services.jobs import steps


def test_initialize_steps_creates_every_step_once(db, make_job):
    job = make_job()

    steps.initialize_steps(db, job.id)
    steps.initialize_steps(db, job.id)

    rows = steps.get_job_steps(db, job.id)
    assert [s.step_name for s in rows] == ["convert", "split", "stt", "dify_workflow", "persist", "cleanup"]
    assert [s.step_order for s in rows] == [1, 2, 3, 4, 5, 6]
    assert {s.status for s in rows} == {"pending"}


def test_initialize_steps_keeps_existing_rows_on_retry(db, make_job):
    job = make_job()
    steps.initialize_steps(db, job.id)
    steps.complete_step(db, job.id, "convert", {"converted": True})

    steps.initialize_steps(db, job.id)

    rows = {s.step_name: s for s in steps.get_job_steps(db, job.id)}
    assert len(rows) == 6
    assert rows["convert"].status == "completed"


def test_step_lifecycle_records_duration_and_metadata(db, make_job):
    job = make_job()
    steps.initialize_steps(db, job.id)

    steps.start_step(db, job.id, "split")
    assert steps.get_current_step(db, job.id).step_name == "split"

    done = steps.complete_step(db, job.id, "split", {"chunk_count": 3})
    assert done.status == "completed"
    assert done.duration_ms is not None and done.duration_ms >= 0
    assert done.metadata_json == {"chunk_count": 3}

    steps.start_step(db, job.id, "stt")
    failed = steps.fail_step(db, job.id, "stt", RuntimeError("engine unreachable"))
    assert failed.status == "failed"
    assert failed.error_message == "engine unreachable"
    assert steps.get_current_step(db, job.id).step_name == "stt"


def test_skip_step_keeps_reason(db, make_job):
    job = make_job()
    steps.initialize_steps(db, job.id)

    skipped = steps.skip_step(db, job.id, "convert", "Already in MP3 format")

    assert skipped.status == "skipped"
    assert skipped.metadata_json == {"reason": "Already in MP3 format"}


def test_steps_summary_counts_statuses(db, make_job):
    job = make_job()
    steps.initialize_steps(db, job.id)
    steps.skip_step(db, job.id, "convert", "Already in MP3 format")
    steps.start_step(db, job.id, "split")
    steps.complete_step(db, job.id, "split")
    steps.start_step(db, job.id, "stt")
    steps.fail_step(db, job.id, "stt", "INSUFFICIENT_SUCCESS_RATE")

    summary = steps.get_steps_summary(db, job.id)

    assert summary["total"] == 6
    assert summary["skipped"] == 1
    assert summary["completed"] == 1
    assert summary["failed"] == 1
    assert summary["pending"] == 3
    assert summary["failed_step"]["name"] == "stt"
    assert summary["failed_step"]["error"] == "INSUFFICIENT_SUCCESS_RATE"


def test_unknown_step_is_rejected(db, make_job):
    job = make_job()
    with pytest.raises(ValueError):
        steps.start_step(db, job.id, "upload")
