"""Exclusive job acquisition and liveness tracking.

``acquire_job_lock`` is the only place where mutual exclusion between workers
is enforced: a single conditional UPDATE whose affected-row count decides the
winner. Everything else in this module is best-effort bookkeeping around the
``processing_jobs`` row.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.models.common import as_utc, utcnow
from app.models.processing_job import ProcessingJob

logger = logging.getLogger(__name__)

LOCKABLE_STATUSES = ("pending", "failed")


@dataclass(slots=True, frozen=True)
class LockResult:
    acquired: bool
    attempts: int = 0
    reason: str | None = None


def acquire_job_lock(db: Session, job_id: str) -> LockResult:
    settings = get_settings()
    now = utcnow()
    try:
        result = db.execute(
            update(ProcessingJob)
            .where(
                ProcessingJob.id == job_id,
                ProcessingJob.status.in_(LOCKABLE_STATUSES),
                ProcessingJob.attempts < ProcessingJob.max_attempts,
            )
            .values(
                status="processing",
                started_at=now,
                heartbeat_at=now,
                timeout_at=now + timedelta(minutes=settings.job_max_duration_minutes),
                attempts=ProcessingJob.attempts + 1,
                timeout_reason="none",
                completed_at=None,
                error_message=None,
                error_code=None,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount == 1:
            attempts = db.scalar(select(ProcessingJob.attempts).where(ProcessingJob.id == job_id)) or 0
            logger.info("job_lock_acquired", extra={"job_id": job_id, "attempts": attempts})
            return LockResult(acquired=True, attempts=attempts)

        current = db.execute(
            select(ProcessingJob.status, ProcessingJob.attempts, ProcessingJob.max_attempts).where(
                ProcessingJob.id == job_id
            )
        ).first()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("job_lock_error", extra={"job_id": job_id, "error": str(exc)})
        return LockResult(acquired=False, reason="error")

    if current is None:
        reason = "job_not_found"
        attempts = 0
    else:
        status, attempts, max_attempts = current
        if status in LOCKABLE_STATUSES and attempts >= max_attempts:
            reason = "max_attempts_exceeded"
        elif status in LOCKABLE_STATUSES or status == "processing":
            # A lockable status here means another worker won and already let go.
            reason = "already_processing"
        else:
            reason = "invalid_status"
    logger.warning("job_lock_not_acquired", extra={"job_id": job_id, "reason": reason})
    return LockResult(acquired=False, attempts=attempts, reason=reason)


def update_heartbeat(job_id: str, session_factory: Callable[[], Session] = SessionLocal) -> bool:
    """Refresh heartbeat_at while the job is processing. Never raises."""
    db = session_factory()
    try:
        result = db.execute(
            update(ProcessingJob)
            .where(ProcessingJob.id == job_id, ProcessingJob.status == "processing")
            .values(heartbeat_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            logger.warning("heartbeat_job_not_processing", extra={"job_id": job_id})
            return False
        logger.debug("heartbeat_updated", extra={"job_id": job_id})
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("heartbeat_update_failed", extra={"job_id": job_id, "error": str(exc)})
        return False
    finally:
        db.close()


class HeartbeatPulse:
    """Periodic heartbeat for one job, owned by the caller that processes it.

    Use as a context manager so the background thread is torn down on every
    exit path::

        with HeartbeatPulse(job_id) as pulse:
            ...
    """

    def __init__(
        self,
        job_id: str,
        interval_seconds: float | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = get_settings().job_heartbeat_interval_ms / 1000
        self.job_id = job_id
        self.interval_seconds = interval_seconds
        self.beats = 0
        self._session_factory = session_factory
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> "HeartbeatPulse":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._run, name=f"heartbeat-{self.job_id}", daemon=True)
        self._thread.start()
        logger.debug("heartbeat_pulse_started", extra={"job_id": self.job_id, "interval_seconds": self.interval_seconds})
        return self

    def stop(self) -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval_seconds, 5.0))
        logger.debug("heartbeat_pulse_stopped", extra={"job_id": self.job_id, "beats": self.beats})

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            if not update_heartbeat(self.job_id, self._session_factory):
                logger.warning("heartbeat_pulse_giving_up", extra={"job_id": self.job_id})
                self._stop_event.set()
                return
            self.beats += 1

    def __enter__(self) -> "HeartbeatPulse":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.stop()
        return False


def end_job(
    db: Session,
    job_id: str,
    status: str,
    timeout_reason: str = "none",
    error_message: str | None = None,
    error_code: str | None = None,
    pulse: HeartbeatPulse | None = None,
    attempts: int | None = None,
) -> bool:
    """Terminal write for the attempt that owns the job.

    Only a ``processing`` row is ended, and when ``attempts`` is given only
    the attempt that ``acquire_job_lock`` handed out. Returns False when the
    job was reaped or re-acquired in the meantime; nothing is written then.
    """
    if pulse is not None:
        pulse.stop()

    values = {"status": status, "timeout_reason": timeout_reason, "completed_at": utcnow()}
    if error_message:
        values["error_message"] = error_message
    if error_code:
        values["error_code"] = error_code
    conditions = [ProcessingJob.id == job_id, ProcessingJob.status == "processing"]
    if attempts is not None:
        conditions.append(ProcessingJob.attempts == attempts)
    try:
        result = db.execute(
            update(ProcessingJob)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("job_end_failed", extra={"job_id": job_id, "status": status, "error": str(exc)})
        return False
    if result.rowcount != 1:
        logger.warning("job_ownership_lost", extra={"job_id": job_id, "status": status, "attempts": attempts})
        return False
    logger.info("job_ended", extra={"job_id": job_id, "status": status, "timeout_reason": timeout_reason})
    return True


def can_retry_job(db: Session, job_id: str) -> bool:
    row = db.execute(
        select(ProcessingJob.attempts, ProcessingJob.max_attempts).where(ProcessingJob.id == job_id)
    ).first()
    if row is None:
        return False
    attempts, max_attempts = row
    return attempts < max_attempts


def get_job_heartbeat_status(db: Session, job_id: str) -> dict | None:
    job = db.scalar(select(ProcessingJob).where(ProcessingJob.id == job_id))
    if job is None:
        return None
    now = utcnow()
    heartbeat_at = as_utc(job.heartbeat_at)
    timeout_at = as_utc(job.timeout_at)
    return {
        "id": job.id,
        "status": job.status,
        "started_at": as_utc(job.started_at),
        "heartbeat_at": heartbeat_at,
        "timeout_at": timeout_at,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "timeout_reason": job.timeout_reason,
        "seconds_since_heartbeat": int((now - heartbeat_at).total_seconds()) if heartbeat_at else None,
        "seconds_until_timeout": int((timeout_at - now).total_seconds()) if timeout_at else None,
    }
