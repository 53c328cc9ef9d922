import logging
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.security import encrypt_text
from app.db.session import SessionLocal
from app.models.common import utcnow
from app.models.job_chunk import JobChunk
from app.models.processing_job import ProcessingJob
from app.services.jobs.heartbeat import can_retry_job

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"completed", "failed"}


class RetryNotAllowed(Exception):
    pass


def create_processing_job(
    db: Session,
    file_id: str | None,
    user_id: str,
    company_id: str,
    staff_id: str | None,
    local_file_path: str,
) -> ProcessingJob:
    job = ProcessingJob(
        file_id=file_id,
        user_id=user_id,
        company_id=company_id,
        staff_id=staff_id,
        local_file_path=local_file_path,
        status="pending",
        progress=0,
        current_step="Job created",
        max_attempts=get_settings().job_max_attempts,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("processing_job_created", extra={"job_id": job.id, "file_id": file_id, "user_id": user_id})
    return job


def update_job_status(
    job_id: str,
    status: str,
    progress: int | None = None,
    message: str | None = None,
    error_message: str | None = None,
    attempts: int | None = None,
) -> bool:
    """Write a status/progress update for a job that has not been taken away.

    Progress updates only land on a ``processing`` row. A terminal status
    lands on an unfinished row or, with ``attempts``, on the row that attempt
    itself just ended. Returns False when the update was ignored.
    """
    values: dict = {"status": status}
    if progress is not None:
        values["progress"] = progress
    if message is not None:
        values["current_step"] = message
    if error_message is not None:
        values["error_message"] = error_message

    conditions = [ProcessingJob.id == job_id]
    if status in TERMINAL_STATUSES:
        values["completed_at"] = utcnow()
        if attempts is None:
            conditions.append(ProcessingJob.status.in_(("pending", "processing")))
        else:
            conditions.append(ProcessingJob.status.in_(("processing", status)))
    else:
        conditions.append(ProcessingJob.status == "processing")
    if attempts is not None:
        conditions.append(ProcessingJob.attempts == attempts)

    db = SessionLocal()
    try:
        result = db.execute(update(ProcessingJob).where(*conditions).values(**values))
        db.commit()
    finally:
        db.close()
    if result.rowcount != 1:
        logger.warning("job_status_update_ignored", extra={"job_id": job_id, "status": status, "attempts": attempts})
        return False
    logger.debug("job_status_updated", extra={"job_id": job_id, "status": status, "progress": progress})
    return True


def register_chunks(job_id: str, count: int) -> None:
    db = SessionLocal()
    try:
        db.execute(delete(JobChunk).where(JobChunk.job_id == job_id))
        db.add_all(JobChunk(job_id=job_id, chunk_index=index, status="pending") for index in range(count))
        db.execute(
            update(ProcessingJob)
            .where(ProcessingJob.id == job_id)
            .values(total_chunks=count, completed_chunks=0)
        )
        db.commit()
    finally:
        db.close()
    logger.debug("chunks_registered", extra={"job_id": job_id, "chunk_count": count})


def update_chunk_status(
    job_id: str,
    chunk_index: int,
    status: str,
    result: str | None = None,
    error: str | None = None,
) -> None:
    db = SessionLocal()
    try:
        chunk = db.scalar(select(JobChunk).where(JobChunk.job_id == job_id, JobChunk.chunk_index == chunk_index))
        if chunk is None:
            chunk = JobChunk(job_id=job_id, chunk_index=chunk_index)
            db.add(chunk)
        already_completed = chunk.status == "completed"
        chunk.status = status
        if result is not None:
            chunk.encrypted_stt_result = encrypt_text(result)
        if error is not None:
            chunk.error_message = error
        if status == "failed":
            chunk.retry_count = (chunk.retry_count or 0) + 1
        if status == "completed" and not already_completed:
            db.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .values(completed_chunks=ProcessingJob.completed_chunks + 1)
            )
        db.commit()
    finally:
        db.close()


def get_job(db: Session, job_id: str) -> ProcessingJob | None:
    return db.scalar(select(ProcessingJob).where(ProcessingJob.id == job_id))


def get_chunk_status(db: Session, job_id: str) -> list[JobChunk]:
    return list(db.scalars(select(JobChunk).where(JobChunk.job_id == job_id).order_by(JobChunk.chunk_index)).all())


def retry_failed_job(db: Session, job_id: str, enqueue: Callable[[str], None]) -> ProcessingJob:
    job = get_job(db, job_id)
    if job is None:
        raise LookupError("Job not found")
    if not can_retry_job(db, job_id):
        raise RetryNotAllowed(f"Job has used all {job.max_attempts} attempts")

    result = db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job_id, ProcessingJob.status == "failed")
        .values(
            status="pending",
            progress=0,
            current_step="Retry queued",
            error_message=None,
            error_code=None,
            completed_at=None,
            started_at=None,
            heartbeat_at=None,
            timeout_at=None,
            timeout_reason="none",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise RetryNotAllowed(f"Job cannot be retried: current status is '{job.status}', expected 'failed'")
    db.execute(
        update(JobChunk)
        .where(JobChunk.job_id == job_id)
        .values(status="pending", retry_count=0, error_message=None)
    )
    db.commit()
    db.refresh(job)

    enqueue(job_id)
    logger.info("job_retry_queued", extra={"job_id": job_id, "attempts": job.attempts})
    return job


def cleanup_old_jobs(db: Session, days_to_keep: int | None = None) -> int:
    if days_to_keep is None:
        days_to_keep = get_settings().job_retention_days
    cutoff = utcnow() - timedelta(days=days_to_keep)
    stale = db.scalars(
        select(ProcessingJob).where(ProcessingJob.status.in_(TERMINAL_STATUSES), ProcessingJob.created_at < cutoff)
    ).all()
    for job in stale:
        db.delete(job)
    db.commit()
    logger.info("old_jobs_cleaned_up", extra={"deleted_count": len(stale)})
    return len(stale)
