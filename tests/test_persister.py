from sqlalchemy import func, select

from app.core.security import decrypt_text
from app.models.record import Record
from app.services import cache
from app.services.audio import persister


def _payload(**overrides):
    data = {
        "file_id": "file-1",
        "user_id": "user-1",
        "company_id": "company-1",
        "staff_id": "staff-1",
        "audio_file_path": "/uploads/a.mp3",
        "stt_text": "hello there",
        "skillsheet": '{"career_1": {"summary": "Sales"}}',
        "lor": "Reliable.",
        "work_content": ["Sales"],
        "skills": "Negotiation",
        "hope": None,
    }
    data.update(overrides)
    return persister.RecordPayload(**data)


def test_save_record_twice_updates_in_place(db, make_job):
    job = make_job()

    first_id, first_new = persister.save_record(db, job.id, _payload())
    second_id, second_new = persister.save_record(
        db,
        job.id,
        _payload(stt_text="second transcript", quality_status="partial", success_rate=0.8, lor="Updated."),
    )

    assert first_new is True
    assert second_new is False
    assert first_id == second_id
    assert db.scalar(select(func.count()).select_from(Record).where(Record.job_id == job.id)) == 1
    record = persister.get_record_by_job_id(db, job.id)
    db.refresh(record)
    assert decrypt_text(record.encrypted_stt) == "second transcript"
    assert record.lor == "Updated."
    assert record.quality_status == "partial"
    assert record.chunk_success_rate == 0.8


def test_transcript_is_encrypted_at_rest(db, make_job):
    job = make_job()

    persister.save_record(db, job.id, _payload(stt_text="private words"))

    record = persister.get_record_by_job_id(db, job.id)
    assert "private words" not in record.encrypted_stt
    assert decrypt_text(record.encrypted_stt) == "private words"


def test_complete_record_persistence_backfills_job(db, make_job):
    job = make_job()

    result = persister.complete_record_persistence(db, job.id, _payload())

    assert result.success is True
    db.refresh(job)
    assert job.record_id == result.record_id


def test_cache_invalidation_failure_is_not_fatal(db, make_job, monkeypatch):
    job = make_job()
    patterns = []

    def broken_invalidate(pattern):
        patterns.append(pattern)
        raise ConnectionError("redis down")

    monkeypatch.setattr(cache, "invalidate_pattern", broken_invalidate)

    result = persister.complete_record_persistence(db, job.id, _payload())

    assert result.success is True
    assert patterns == ["records:company:company-1:*"]


def test_cache_invalidation_covers_company_keys(monkeypatch):
    patterns = []
    monkeypatch.setattr(cache, "invalidate_pattern", patterns.append)

    persister.invalidate_cache("job-1", "company-9")

    assert patterns == ["records:company:company-9:*", "dashboard:stats:company:company-9"]


def test_complete_record_persistence_reports_errors(db, make_job, monkeypatch):
    job = make_job()

    def broken_save(db, job_id, data):
        raise RuntimeError("database went away")

    monkeypatch.setattr(persister, "save_record", broken_save)

    result = persister.complete_record_persistence(db, job.id, _payload())

    assert result.success is False
    assert result.record_id is None
    assert result.error == "database went away"
