import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import openai
from openai import OpenAI

from app.core.config import get_settings
from app.services.audio.errors import TranscriptionError
from app.services.audio.types import Chunk, ChunkResult, QualityReport
from app.services.external import call_with_retry, categorize_error

logger = logging.getLogger(__name__)

# Job progress moves from 15% to 85% while chunks finish.
STT_PROGRESS_START = 15
STT_PROGRESS_SPAN = 70


def transcribe_chunk(job_id: str, chunk_path: str) -> str:
    settings = get_settings()
    if not settings.openai_api_key:
        raise TranscriptionError("OPENAI_API_KEY is not configured.", code="STT_UPLOAD_FAILED")
    client = OpenAI(api_key=settings.openai_api_key, timeout=settings.external_timeout_seconds, max_retries=0)

    def _request() -> str:
        with Path(chunk_path).open("rb") as handle:
            transcription = client.audio.transcriptions.create(
                model=settings.openai_transcription_model,
                file=handle,
            )
        return transcription.text or ""

    try:
        return call_with_retry(_request, job_id=job_id, operation="upload", label=f"stt:{Path(chunk_path).name}")
    except openai.OpenAIError as exc:
        code = categorize_error(exc, "upload")
        raise TranscriptionError(f"{code}: {exc}", code=code) from exc


def process_chunk(job_id: str, chunk: Chunk, update_chunk_status: Callable) -> ChunkResult:
    update_chunk_status(job_id, chunk.index, "processing")
    try:
        text = transcribe_chunk(job_id, chunk.path)
    except Exception as exc:  # noqa: BLE001
        logger.warning("chunk_transcription_failed", extra={"job_id": job_id, "chunk_index": chunk.index, "error": str(exc)})
        update_chunk_status(job_id, chunk.index, "failed", None, str(exc))
        return ChunkResult(index=chunk.index, success=False, error=str(exc))
    update_chunk_status(job_id, chunk.index, "completed", text)
    return ChunkResult(index=chunk.index, success=True, text=text)


def process_all_chunks(
    job_id: str,
    chunks: list[Chunk],
    update_chunk_status: Callable,
    update_job_status: Callable,
) -> list[ChunkResult]:
    """Transcribe every chunk on a bounded pool; results come back in index order."""
    settings = get_settings()
    total = len(chunks)
    if total == 0:
        return []

    max_workers = max(1, min(settings.chunk_concurrency, total))
    logger.info("chunk_processing_started", extra={"job_id": job_id, "total_chunks": total, "max_workers": max_workers})

    results: dict[int, ChunkResult] = {}
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stt") as pool:
        futures = [pool.submit(process_chunk, job_id, chunk, update_chunk_status) for chunk in chunks]
        for completed, future in enumerate(as_completed(futures), start=1):
            result = future.result()
            results[result.index] = result
            progress = STT_PROGRESS_START + int(completed / total * STT_PROGRESS_SPAN)
            update_job_status(job_id, "processing", progress, f"Transcribing ({completed}/{total})")

    ordered = [results[index] for index in sorted(results)]
    failed = [r.index for r in ordered if not r.success]
    if failed:
        logger.warning("some_chunks_failed", extra={"job_id": job_id, "failed_indices": failed})
    logger.info(
        "chunk_processing_completed",
        extra={"job_id": job_id, "total_chunks": total, "success_count": total - len(failed), "failed_count": len(failed)},
    )
    return ordered


def calculate_quality(job_id: str, results: list[ChunkResult], total_chunks: int) -> QualityReport:
    settings = get_settings()
    successful = [r for r in results if r.success]
    failed = [r for r in results if not r.success]
    success_rate = len(successful) / total_chunks if total_chunks > 0 else 0.0
    report = QualityReport(
        success_rate=success_rate,
        quality_status="complete" if success_rate == 1.0 else "partial",
        meets_threshold=total_chunks > 0 and success_rate >= settings.min_chunk_success_rate,
        successful_chunks=successful,
        failed_chunks=failed,
        warnings=[
            {"code": "CHUNK_PROCESS_FAILED", "chunk_index": r.index, "error": r.error or "Unknown error"}
            for r in failed
        ],
    )
    logger.info(
        "quality_calculated",
        extra={
            "job_id": job_id,
            "success_rate": round(success_rate, 4),
            "quality_status": report.quality_status,
            "meets_threshold": report.meets_threshold,
        },
    )
    return report


def merge_results(results: list[ChunkResult]) -> str:
    return "\n".join(r.text for r in sorted(results, key=lambda r: r.index) if r.success)
