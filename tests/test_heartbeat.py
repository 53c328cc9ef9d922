import threading
import time
from datetime import timedelta

from sqlalchemy import update

from app.db.session import SessionLocal
from app.models.common import as_utc, utcnow
from app.models.processing_job import ProcessingJob
from app.services.jobs import heartbeat


def _set(db, job_id, **values):
    db.execute(update(ProcessingJob).where(ProcessingJob.id == job_id).values(**values))
    db.commit()


def test_acquire_lock_moves_pending_job_to_processing(db, make_job):
    job = make_job()
    before = utcnow()

    result = heartbeat.acquire_job_lock(db, job.id)

    assert result.acquired is True
    assert result.attempts == 1
    db.refresh(job)
    assert job.status == "processing"
    assert job.attempts == 1
    assert job.timeout_reason == "none"
    assert as_utc(job.heartbeat_at) >= before
    assert as_utc(job.timeout_at) >= before + timedelta(minutes=30)


def test_only_one_concurrent_worker_acquires_the_lock(make_job):
    job = make_job()
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def worker():
        session = SessionLocal()
        try:
            barrier.wait()
            outcome = heartbeat.acquire_job_lock(session, job.id)
        finally:
            session.close()
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    acquired = [r for r in results if r.acquired]
    assert len(acquired) == 1
    assert all(r.reason == "already_processing" for r in results if not r.acquired)


def test_acquire_lock_on_processing_job_leaves_attempts_unchanged(db, make_job):
    job = make_job()
    assert heartbeat.acquire_job_lock(db, job.id).acquired

    second = heartbeat.acquire_job_lock(db, job.id)

    assert second.acquired is False
    assert second.reason == "already_processing"
    db.refresh(job)
    assert job.attempts == 1


def test_acquire_lock_rejects_completed_job(db, make_job):
    job = make_job()
    _set(db, job.id, status="completed")

    result = heartbeat.acquire_job_lock(db, job.id)

    assert result.acquired is False
    assert result.reason == "invalid_status"


def test_acquire_lock_unknown_job(db):
    result = heartbeat.acquire_job_lock(db, "missing")

    assert result.acquired is False
    assert result.reason == "job_not_found"


def test_failed_job_can_be_reacquired_until_attempts_run_out(db, make_job):
    job = make_job()
    _set(db, job.id, status="failed", attempts=2, max_attempts=3, error_message="boom", error_code="X")

    result = heartbeat.acquire_job_lock(db, job.id)
    assert result.acquired is True
    assert result.attempts == 3
    db.refresh(job)
    assert job.error_message is None
    assert job.error_code is None

    _set(db, job.id, status="failed")
    exhausted = heartbeat.acquire_job_lock(db, job.id)
    assert exhausted.acquired is False
    assert exhausted.reason == "max_attempts_exceeded"


def test_update_heartbeat_only_while_processing(db, make_job):
    job = make_job()
    assert heartbeat.update_heartbeat(job.id) is False

    heartbeat.acquire_job_lock(db, job.id)
    stale = utcnow() - timedelta(minutes=10)
    _set(db, job.id, heartbeat_at=stale)

    assert heartbeat.update_heartbeat(job.id) is True
    db.refresh(job)
    assert as_utc(job.heartbeat_at) > stale


def test_pulse_beats_until_stopped(db, make_job):
    job = make_job()
    heartbeat.acquire_job_lock(db, job.id)

    with heartbeat.HeartbeatPulse(job.id, interval_seconds=0.02) as pulse:
        deadline = time.monotonic() + 2
        while pulse.beats < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert pulse.running

    assert pulse.beats >= 2
    assert not pulse.running
    beats_after_stop = pulse.beats
    time.sleep(0.1)
    assert pulse.beats == beats_after_stop


def test_pulse_gives_up_when_job_is_no_longer_processing(db, make_job):
    job = make_job()

    pulse = heartbeat.HeartbeatPulse(job.id, interval_seconds=0.01).start()
    deadline = time.monotonic() + 2
    while pulse.running and time.monotonic() < deadline:
        time.sleep(0.01)

    assert not pulse.running
    assert pulse.beats == 0
    pulse.stop()


def test_end_job_stops_pulse_before_writing_status(db, make_job):
    job = make_job()
    heartbeat.acquire_job_lock(db, job.id)
    pulse = heartbeat.HeartbeatPulse(job.id, interval_seconds=0.02).start()

    assert heartbeat.end_job(db, job.id, "failed", "none", "Convert failed", "AUDIO_CONVERSION_FAILED", pulse=pulse)

    assert not pulse.running
    db.refresh(job)
    assert job.status == "failed"
    assert job.timeout_reason == "none"
    assert job.error_message == "Convert failed"
    assert job.error_code == "AUDIO_CONVERSION_FAILED"
    assert job.completed_at is not None


def test_can_retry_job(db, make_job):
    job = make_job()
    assert heartbeat.can_retry_job(db, job.id) is True

    _set(db, job.id, attempts=3, max_attempts=3)
    assert heartbeat.can_retry_job(db, job.id) is False
    assert heartbeat.can_retry_job(db, "missing") is False


def test_heartbeat_status_reports_ages(db, make_job):
    job = make_job()
    heartbeat.acquire_job_lock(db, job.id)

    payload = heartbeat.get_job_heartbeat_status(db, job.id)

    assert payload["status"] == "processing"
    assert payload["seconds_since_heartbeat"] <= 5
    assert payload["seconds_until_timeout"] > 0
    assert heartbeat.get_job_heartbeat_status(db, "missing") is None
