import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.common import as_utc, utcnow
from app.models.job_step import STEP_STATUSES, JobStep

logger = logging.getLogger(__name__)

STEP_DEFINITIONS = {
    "convert": {"order": 1, "description": "Audio format conversion"},
    "split": {"order": 2, "description": "Audio splitting"},
    "stt": {"order": 3, "description": "Speech-to-text processing"},
    "dify_workflow": {"order": 4, "description": "Structured extraction workflow"},
    "persist": {"order": 5, "description": "Save record"},
    "cleanup": {"order": 6, "description": "Temporary file cleanup"},
}
STEP_NAMES = list(STEP_DEFINITIONS)


def initialize_steps(db: Session, job_id: str) -> None:
    """Create a pending row for every step that does not have one yet."""
    existing = set(db.scalars(select(JobStep.step_name).where(JobStep.job_id == job_id)).all())
    missing = [name for name in STEP_NAMES if name not in existing]
    for name in missing:
        db.add(JobStep(job_id=job_id, step_name=name, step_order=STEP_DEFINITIONS[name]["order"], status="pending"))
    try:
        db.commit()
    except IntegrityError:
        # Another writer inserted the same rows first; the end state is identical.
        db.rollback()
    logger.debug("job_steps_initialized", extra={"job_id": job_id, "created": len(missing)})


def _get_or_create_step(db: Session, job_id: str, step_name: str) -> JobStep:
    if step_name not in STEP_DEFINITIONS:
        raise ValueError(f"Unknown step: {step_name}")
    step = db.scalar(select(JobStep).where(JobStep.job_id == job_id, JobStep.step_name == step_name))
    if step is None:
        step = JobStep(job_id=job_id, step_name=step_name, step_order=STEP_DEFINITIONS[step_name]["order"])
        db.add(step)
    return step


def _duration_ms(step: JobStep, finished_at) -> int | None:
    started_at = as_utc(step.started_at)
    if started_at is None:
        return None
    return int((finished_at - started_at).total_seconds() * 1000)


def start_step(db: Session, job_id: str, step_name: str) -> JobStep:
    step = _get_or_create_step(db, job_id, step_name)
    step.status = "running"
    step.started_at = utcnow()
    step.completed_at = None
    step.duration_ms = None
    step.error_message = None
    db.commit()
    logger.info("step_started", extra={"job_id": job_id, "step": step_name})
    return step


def complete_step(db: Session, job_id: str, step_name: str, metadata: dict | None = None) -> JobStep:
    step = _get_or_create_step(db, job_id, step_name)
    completed_at = utcnow()
    step.status = "completed"
    step.completed_at = completed_at
    step.duration_ms = _duration_ms(step, completed_at)
    step.metadata_json = metadata
    db.commit()
    logger.info("step_completed", extra={"job_id": job_id, "step": step_name, "duration_ms": step.duration_ms})
    return step


def fail_step(db: Session, job_id: str, step_name: str, error: Exception | str) -> JobStep:
    step = _get_or_create_step(db, job_id, step_name)
    completed_at = utcnow()
    step.status = "failed"
    step.completed_at = completed_at
    step.duration_ms = _duration_ms(step, completed_at)
    step.error_message = str(error)
    db.commit()
    logger.error("step_failed", extra={"job_id": job_id, "step": step_name, "error": str(error)})
    return step


def skip_step(db: Session, job_id: str, step_name: str, reason: str | None = None) -> JobStep:
    step = _get_or_create_step(db, job_id, step_name)
    step.status = "skipped"
    step.completed_at = utcnow()
    step.metadata_json = {"reason": reason} if reason else None
    db.commit()
    logger.info("step_skipped", extra={"job_id": job_id, "step": step_name, "reason": reason})
    return step


def get_job_steps(db: Session, job_id: str) -> list[JobStep]:
    return list(db.scalars(select(JobStep).where(JobStep.job_id == job_id).order_by(JobStep.step_order)).all())


def get_current_step(db: Session, job_id: str) -> JobStep | None:
    """Running step if any, else the last completed or failed one."""
    steps = get_job_steps(db, job_id)
    running = [s for s in steps if s.status == "running"]
    if running:
        return running[-1]
    finished = [s for s in steps if s.status in {"completed", "failed"}]
    return finished[-1] if finished else None


def get_steps_summary(db: Session, job_id: str) -> dict:
    steps = get_job_steps(db, job_id)
    summary = {status: 0 for status in STEP_STATUSES}
    summary.update({"total": len(steps), "failed_step": None, "total_duration_ms": 0})
    for step in steps:
        summary[step.status] += 1
        summary["total_duration_ms"] += step.duration_ms or 0
        if step.status == "failed":
            summary["failed_step"] = {
                "name": step.step_name,
                "error": step.error_message,
                "duration_ms": step.duration_ms,
            }
    return summary
