import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.common import as_utc, utcnow
from app.models.processing_job import ProcessingJob

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StalledJob:
    id: str
    reason: str
    minutes_since_heartbeat: int | None
    attempts: int
    max_attempts: int


def find_stalled_jobs(db: Session, now: datetime | None = None) -> list[StalledJob]:
    settings = get_settings()
    now = now or utcnow()
    heartbeat_cutoff = now - timedelta(minutes=settings.job_heartbeat_timeout_minutes)
    rows = db.scalars(
        select(ProcessingJob)
        .where(
            ProcessingJob.status == "processing",
            or_(
                ProcessingJob.heartbeat_at.is_(None),
                ProcessingJob.heartbeat_at < heartbeat_cutoff,
                ProcessingJob.timeout_at < now,
            ),
        )
        .order_by(ProcessingJob.heartbeat_at.asc())
    ).all()

    stalled = []
    for job in rows:
        heartbeat_at = as_utc(job.heartbeat_at)
        timeout_at = as_utc(job.timeout_at)
        reason = "max_duration" if timeout_at is not None and timeout_at < now else "heartbeat_timeout"
        minutes = int((now - heartbeat_at).total_seconds() // 60) if heartbeat_at else None
        stalled.append(StalledJob(job.id, reason, minutes, job.attempts, job.max_attempts))
    return stalled


def _mark_job_as_failed(db: Session, job: StalledJob) -> bool:
    if job.reason == "heartbeat_timeout":
        message = f"Job timed out (no heartbeat for {job.minutes_since_heartbeat} minutes)"
    else:
        message = "Job timed out (maximum duration exceeded)"
    result = db.execute(
        update(ProcessingJob)
        .where(ProcessingJob.id == job.id, ProcessingJob.status == "processing")
        .values(
            status="failed",
            timeout_reason=job.reason,
            error_message=message,
            error_code="JOB_TIMEOUT",
            current_step="Timed out",
            completed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def run_reaper(db: Session, enqueue: Callable[[str], None]) -> dict:
    stats = {"processed": 0, "requeued": 0, "failed": 0}
    stalled = find_stalled_jobs(db)
    if not stalled:
        logger.debug("reaper_no_stalled_jobs")
        return stats

    logger.info("reaper_found_stalled_jobs", extra={"count": len(stalled)})
    for job in stalled:
        if not _mark_job_as_failed(db, job):
            # The worker finished or another reaper got there first.
            continue
        stats["processed"] += 1
        logger.warning(
            "job_timed_out",
            extra={"job_id": job.id, "reason": job.reason, "attempts": job.attempts, "max_attempts": job.max_attempts},
        )
        if job.attempts < job.max_attempts:
            enqueue(job.id)
            stats["requeued"] += 1
        else:
            logger.error("job_permanently_failed", extra={"job_id": job.id, "attempts": job.attempts})
            stats["failed"] += 1

    logger.info("reaper_completed", extra=stats)
    return stats
