import logging
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.security import encrypt_text
from app.models.common import utcnow
from app.models.processing_job import ProcessingJob
from app.models.record import Record
from app.services import cache
from app.services.audio.types import PersistResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecordPayload:
    file_id: str | None
    user_id: str
    company_id: str
    staff_id: str | None
    audio_file_path: str
    stt_text: str
    skillsheet: str | None = None
    lor: str | None = None
    work_content: list[str] = field(default_factory=list)
    skills: str | None = None
    hope: str | None = None
    quality_status: str = "complete"
    success_rate: float = 1.0
    warnings: list[dict] = field(default_factory=list)


def _apply(record: Record, data: RecordPayload) -> None:
    record.encrypted_stt = encrypt_text(data.stt_text)
    record.skill_sheet = data.skillsheet
    record.lor = data.lor
    record.salesforce = list(data.work_content or [])
    record.skills = data.skills
    record.hope = data.hope
    record.quality_status = data.quality_status
    record.chunk_success_rate = round(data.success_rate, 4)
    record.processing_warnings = list(data.warnings or [])


def save_record(db: Session, job_id: str, data: RecordPayload) -> tuple[str, bool]:
    """Insert or update the single record owned by ``job_id``.

    Returns ``(record_id, is_new)``. A concurrent insert for the same job
    loses on the unique constraint and falls back to updating the winner.
    """
    logger.info(
        "record_saving",
        extra={"job_id": job_id, "quality_status": data.quality_status, "success_rate": data.success_rate},
    )
    existing = db.scalar(select(Record).where(Record.job_id == job_id))
    if existing is None:
        record = Record(
            job_id=job_id,
            file_id=data.file_id,
            user_id=data.user_id,
            company_id=data.company_id,
            staff_id=data.staff_id,
            audio_file_path=data.audio_file_path,
            date=utcnow(),
        )
        _apply(record, data)
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = db.scalar(select(Record).where(Record.job_id == job_id))
            if existing is None:
                raise
        else:
            logger.info("record_saved", extra={"job_id": job_id, "record_id": record.id, "is_new": True})
            return record.id, True

    _apply(existing, data)
    db.add(existing)
    db.commit()
    logger.info("record_saved", extra={"job_id": job_id, "record_id": existing.id, "is_new": False})
    return existing.id, False


def update_job_record(db: Session, job_id: str, record_id: str) -> bool:
    try:
        db.execute(update(ProcessingJob).where(ProcessingJob.id == job_id).values(record_id=record_id))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("job_record_reference_failed", extra={"job_id": job_id, "record_id": record_id, "error": str(exc)})
        return False
    return True


def invalidate_cache(job_id: str, company_id: str | None) -> None:
    if not company_id:
        return
    try:
        cache.invalidate_pattern(cache.records_key(company_id, "*"))
        cache.invalidate_pattern(f"dashboard:stats:company:{company_id}")
    except Exception as exc:  # noqa: BLE001
        logger.warning("cache_invalidation_failed", extra={"job_id": job_id, "company_id": company_id, "error": str(exc)})
        return
    logger.debug("cache_invalidated", extra={"job_id": job_id, "company_id": company_id})


def get_record_by_job_id(db: Session, job_id: str) -> Record | None:
    return db.scalar(select(Record).where(Record.job_id == job_id))


def complete_record_persistence(db: Session, job_id: str, data: RecordPayload) -> PersistResult:
    try:
        record_id, _ = save_record(db, job_id, data)
        update_job_record(db, job_id, record_id)
        invalidate_cache(job_id, data.company_id)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.error("record_persistence_failed", extra={"job_id": job_id, "error": str(exc)})
        return PersistResult(success=False, error=str(exc))
    return PersistResult(success=True, record_id=record_id)
