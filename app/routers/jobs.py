import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.processing_job import ProcessingJob
from app.schemas.job import HeartbeatRead, JobCreateResponse, JobRead
from app.services.jobs import heartbeat, tracking
from app.services.storage import delete_file_if_exists, save_upload_file
from app.workers import tasks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    company_id: str = Form(...),
    file_id: str | None = Form(default=None),
    staff_id: str | None = Form(default=None),
    db: Session = Depends(get_db),
) -> JobCreateResponse:
    saved_path = await save_upload_file(file, company_id)
    try:
        job = tracking.create_processing_job(db, file_id, user_id, company_id, staff_id, saved_path)
    except Exception:
        delete_file_if_exists(saved_path)
        raise

    try:
        tasks.enqueue_audio_job(job.id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("audio_job_enqueue_failed", extra={"job_id": job.id})
        tracking.update_job_status(job.id, "failed", None, "Failed to queue job", str(exc))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job queue unavailable") from exc
    return JobCreateResponse(job_id=job.id)


@router.get("/{job_id}", response_model=JobRead)
def get_job(job_id: str, db: Session = Depends(get_db)) -> ProcessingJob:
    job = tracking.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.get("/{job_id}/heartbeat", response_model=HeartbeatRead)
def get_job_heartbeat(job_id: str, db: Session = Depends(get_db)) -> dict:
    payload = heartbeat.get_job_heartbeat_status(db, job_id)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return payload


@router.post("/{job_id}/retry", response_model=JobRead, status_code=status.HTTP_202_ACCEPTED)
def retry_job(job_id: str, db: Session = Depends(get_db)) -> ProcessingJob:
    try:
        return tracking.retry_failed_job(db, job_id, tasks.enqueue_audio_job)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except tracking.RetryNotAllowed as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
