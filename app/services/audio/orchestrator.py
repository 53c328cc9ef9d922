"""Audio job pipeline: convert, split, transcribe, extract, persist, clean up.

One call to ``process_audio_job`` owns one attempt at one job. Ownership is
taken through ``acquire_job_lock``; from then on every exit path tears down
the heartbeat pulse and ends the job with a terminal status, unless the
reaper or a newer attempt has taken the job over in the meantime.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.schemas.extraction import WorkflowOutputs
from app.services.audio import converter, extraction, persister, splitter, stt
from app.services.audio.errors import InsufficientSuccessRateError, PersistenceError
from app.services.audio.types import Chunk, ConversionResult, JobOutcome, Transcript
from app.services.jobs import heartbeat, steps

logger = logging.getLogger(__name__)

PROGRESS_CONVERT = 5
PROGRESS_SPLIT = 10
PROGRESS_STT = 15
PROGRESS_WORKFLOW = 85
PROGRESS_PERSIST = 95
PROGRESS_DONE = 100


@dataclass(slots=True, frozen=True)
class AudioJob:
    job_id: str
    audio_file_path: str
    file_id: str | None
    user_id: str
    company_id: str
    staff_id: str | None


@dataclass(slots=True, frozen=True)
class JobCallbacks:
    update_job_status: Callable
    register_chunks: Callable
    update_chunk_status: Callable


def process_audio_job(
    job_id: str,
    audio_file_path: str,
    file_id: str | None,
    user_id: str,
    company_id: str,
    staff_id: str | None,
    update_job_status: Callable,
    register_chunks: Callable,
    update_chunk_status: Callable,
    session_factory: Callable[[], Session] = SessionLocal,
) -> JobOutcome:
    job = AudioJob(job_id, audio_file_path, file_id, user_id, company_id, staff_id)
    callbacks = JobCallbacks(update_job_status, register_chunks, update_chunk_status)

    db = session_factory()
    try:
        lock = heartbeat.acquire_job_lock(db, job_id)
        if not lock.acquired:
            logger.warning("audio_job_skipped", extra={"job_id": job_id, "reason": lock.reason})
            return JobOutcome(
                success=False,
                error=f"Failed to acquire job lock: {lock.reason}",
                error_code="LOCK_NOT_ACQUIRED",
            )

        logger.info("audio_job_started", extra={"job_id": job_id, "attempts": lock.attempts, "file_id": file_id})
        with heartbeat.HeartbeatPulse(job_id, session_factory=session_factory) as pulse:
            return _run_pipeline(db, job, callbacks, pulse, lock.attempts, session_factory)
    finally:
        db.close()


def _run_pipeline(
    db: Session,
    job: AudioJob,
    callbacks: JobCallbacks,
    pulse: heartbeat.HeartbeatPulse,
    attempts: int,
    session_factory: Callable[[], Session],
) -> JobOutcome:
    active_step: str | None = None
    processed_path: str | None = None
    chunks: list[Chunk] = []

    def checkpoint() -> None:
        heartbeat.update_heartbeat(job.job_id, session_factory)

    try:
        steps.initialize_steps(db, job.job_id)

        active_step = "convert"
        conversion = _convert(db, job, callbacks)
        processed_path = conversion.output_path
        checkpoint()

        active_step = "split"
        chunks = _split(db, job, callbacks, processed_path)
        _register_chunks(db, job, callbacks, chunks)
        checkpoint()

        active_step = "stt"
        transcript = _transcribe(db, job, callbacks, chunks)
        checkpoint()

        active_step = "dify_workflow"
        outputs = _extract(db, job, callbacks, transcript)
        checkpoint()

        active_step = "persist"
        record_id = _persist(db, job, callbacks, transcript, outputs)
        checkpoint()

        active_step = "cleanup"
        _cleanup(db, job, chunks, processed_path)
    except Exception as exc:
        return _fail(db, job, callbacks, pulse, attempts, active_step, exc, chunks, processed_path)

    quality = transcript.quality
    if not heartbeat.end_job(db, job.job_id, "completed", "none", pulse=pulse, attempts=attempts):
        logger.error("audio_job_result_discarded", extra={"job_id": job.job_id, "record_id": record_id})
        return JobOutcome(
            success=False,
            record_id=record_id,
            error="Job was taken over by the stall reaper or another worker",
            error_code="JOB_OWNERSHIP_LOST",
        )
    if quality.quality_status == "partial":
        message = f"Completed with partial transcription ({quality.success_rate * 100:.1f}% of chunks)"
    else:
        message = "Completed"
    callbacks.update_job_status(job.job_id, "completed", PROGRESS_DONE, message, attempts=attempts)
    logger.info(
        "audio_job_completed",
        extra={"job_id": job.job_id, "record_id": record_id, "quality_status": quality.quality_status},
    )
    return JobOutcome(success=True, record_id=record_id, quality_status=quality.quality_status)


def _convert(db: Session, job: AudioJob, callbacks: JobCallbacks) -> ConversionResult:
    callbacks.update_job_status(job.job_id, "processing", PROGRESS_CONVERT, "Converting audio format")
    if not converter.needs_conversion(job.audio_file_path):
        steps.skip_step(db, job.job_id, "convert", "Already in MP3 format")
        return ConversionResult(converted=False, output_path=job.audio_file_path)

    steps.start_step(db, job.job_id, "convert")
    result = converter.convert_to_mp3(job.job_id, job.audio_file_path)
    steps.complete_step(db, job.job_id, "convert", {"converted": result.converted, "output_path": result.output_path})
    return result


def _split(db: Session, job: AudioJob, callbacks: JobCallbacks, processed_path: str) -> list[Chunk]:
    steps.start_step(db, job.job_id, "split")
    callbacks.update_job_status(job.job_id, "processing", PROGRESS_SPLIT, "Splitting audio")
    return splitter.split_audio_with_silence_detection(job.job_id, processed_path)


def _register_chunks(db: Session, job: AudioJob, callbacks: JobCallbacks, chunks: list[Chunk]) -> None:
    callbacks.register_chunks(job.job_id, len(chunks))
    steps.complete_step(
        db,
        job.job_id,
        "split",
        {
            "chunk_count": len(chunks),
            "chunks": [
                {"index": c.index, "start_time": c.start_time, "end_time": c.end_time, "duration": c.duration}
                for c in chunks
            ],
        },
    )


def _transcribe(db: Session, job: AudioJob, callbacks: JobCallbacks, chunks: list[Chunk]) -> Transcript:
    steps.start_step(db, job.job_id, "stt")
    callbacks.update_job_status(job.job_id, "processing", PROGRESS_STT, f"Transcribing ({len(chunks)} chunks)")
    results = stt.process_all_chunks(job.job_id, chunks, callbacks.update_chunk_status, callbacks.update_job_status)
    quality = stt.calculate_quality(job.job_id, results, len(chunks))
    if not quality.meets_threshold:
        raise InsufficientSuccessRateError(quality.success_rate, get_settings().min_chunk_success_rate)

    text = stt.merge_results(results)
    steps.complete_step(
        db,
        job.job_id,
        "stt",
        {
            "success_rate": round(quality.success_rate, 4),
            "quality_status": quality.quality_status,
            "successful_chunks": len(quality.successful_chunks),
            "failed_chunks": len(quality.failed_chunks),
            "text_length": len(text),
        },
    )
    return Transcript(text=text, quality=quality)


def _extract(db: Session, job: AudioJob, callbacks: JobCallbacks, transcript: Transcript) -> WorkflowOutputs:
    steps.start_step(db, job.job_id, "dify_workflow")
    callbacks.update_job_status(job.job_id, "processing", PROGRESS_WORKFLOW, "Extracting career information")
    raw = extraction.execute_main_workflow(job.job_id, transcript.text)
    outputs = extraction.parse_outputs(job.job_id, raw)
    steps.complete_step(
        db,
        job.job_id,
        "dify_workflow",
        {
            "has_skillsheet": outputs.skillsheet is not None,
            "has_lor": outputs.lor is not None,
            "work_content_items": len(outputs.work_content),
            "has_skills": outputs.skills is not None,
            "has_hope": outputs.hope is not None,
        },
    )
    return outputs


def _persist(
    db: Session,
    job: AudioJob,
    callbacks: JobCallbacks,
    transcript: Transcript,
    outputs: WorkflowOutputs,
) -> str:
    steps.start_step(db, job.job_id, "persist")
    callbacks.update_job_status(job.job_id, "processing", PROGRESS_PERSIST, "Saving record")
    quality = transcript.quality
    payload = persister.RecordPayload(
        file_id=job.file_id,
        user_id=job.user_id,
        company_id=job.company_id,
        staff_id=job.staff_id,
        audio_file_path=job.audio_file_path,
        stt_text=transcript.text,
        skillsheet=outputs.skillsheet,
        lor=outputs.lor,
        work_content=outputs.work_content,
        skills=outputs.skills,
        hope=outputs.hope,
        quality_status=quality.quality_status,
        success_rate=quality.success_rate,
        warnings=quality.warnings,
    )
    result = persister.complete_record_persistence(db, job.job_id, payload)
    if not result.success:
        raise PersistenceError(f"Failed to persist record: {result.error}")
    steps.complete_step(db, job.job_id, "persist", {"record_id": result.record_id})
    return result.record_id


def _cleanup(db: Session, job: AudioJob, chunks: list[Chunk], processed_path: str | None) -> None:
    steps.start_step(db, job.job_id, "cleanup")
    cleaned = splitter.cleanup_chunk_files(job.job_id, chunks, processed_path, keep_path=job.audio_file_path)
    steps.complete_step(db, job.job_id, "cleanup", {"cleaned_files": cleaned})


def _fail(
    db: Session,
    job: AudioJob,
    callbacks: JobCallbacks,
    pulse: heartbeat.HeartbeatPulse,
    attempts: int,
    failed_step: str | None,
    exc: Exception,
    chunks: list[Chunk],
    processed_path: str | None,
) -> JobOutcome:
    error = str(exc) or exc.__class__.__name__
    error_code = getattr(exc, "code", None)
    logger.exception(
        "audio_job_failed",
        extra={"job_id": job.job_id, "step": failed_step, "error_code": error_code},
    )
    db.rollback()

    if failed_step is not None:
        try:
            steps.fail_step(db, job.job_id, failed_step, error)
        except Exception:
            db.rollback()
            logger.exception("step_failure_not_recorded", extra={"job_id": job.job_id, "step": failed_step})

    if heartbeat.end_job(db, job.job_id, "failed", "none", error, error_code, pulse=pulse, attempts=attempts):
        try:
            label = f"Failed: {failed_step}" if failed_step else "Failed during initialization"
            callbacks.update_job_status(job.job_id, "failed", None, label, error, attempts=attempts)
        except Exception:
            logger.exception("job_status_not_recorded", extra={"job_id": job.job_id})

    # Temporary files go on the failure path too; the cleanup step row stays pending.
    splitter.cleanup_chunk_files(job.job_id, chunks, processed_path, keep_path=job.audio_file_path)

    return JobOutcome(success=False, error=error, failed_step=failed_step, error_code=error_code)
