import logging

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.services.audio import process_audio_job
from app.services.jobs import reaper, tracking
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.process_audio_job_task")
def process_audio_job_task(job_id: str) -> dict:
    db = SessionLocal()
    try:
        job = tracking.get_job(db, job_id)
        if job is None:
            logger.warning("audio_job_missing", extra={"job_id": job_id})
            return {"success": False, "error": "Job not found"}
        params = {
            "audio_file_path": job.local_file_path,
            "file_id": job.file_id,
            "user_id": job.user_id,
            "company_id": job.company_id,
            "staff_id": job.staff_id,
        }
    finally:
        db.close()

    outcome = process_audio_job(
        job_id,
        update_job_status=tracking.update_job_status,
        register_chunks=tracking.register_chunks,
        update_chunk_status=tracking.update_chunk_status,
        **params,
    )
    return {
        "success": outcome.success,
        "record_id": outcome.record_id,
        "quality_status": outcome.quality_status,
        "error": outcome.error,
        "failed_step": outcome.failed_step,
        "error_code": outcome.error_code,
    }


def enqueue_audio_job(job_id: str) -> None:
    if get_settings().celery_task_always_eager:
        process_audio_job_task(job_id)
    else:
        process_audio_job_task.delay(job_id)
    logger.info("audio_job_enqueued", extra={"job_id": job_id})


@celery_app.task(name="app.workers.tasks.reap_stalled_jobs")
def reap_stalled_jobs() -> dict:
    db = SessionLocal()
    try:
        return reaper.run_reaper(db, enqueue_audio_job)
    except Exception as exc:  # noqa: BLE001
        logger.exception("reaper_failed", extra={"error": str(exc)})
        raise
    finally:
        db.close()


@celery_app.task(name="app.workers.tasks.cleanup_old_jobs_task")
def cleanup_old_jobs_task() -> int:
    db = SessionLocal()
    try:
        return tracking.cleanup_old_jobs(db)
    finally:
        db.close()
