import logging
import re
from dataclasses import dataclass
from pathlib import Path

import ffmpeg

from app.core.config import get_settings
from app.services.audio.errors import AudioSplitError
from app.services.audio.types import Chunk

logger = logging.getLogger(__name__)

MIN_TAIL_SECONDS = 5.0

SILENCE_START_RE = re.compile(r"silence_start:\s*(-?[\d.]+)")
SILENCE_END_RE = re.compile(r"silence_end:\s*(-?[\d.]+)")


@dataclass(slots=True, frozen=True)
class Silence:
    start: float
    end: float

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2


def get_audio_duration(job_id: str, audio_path: str) -> float:
    try:
        probe = ffmpeg.probe(audio_path)
    except ffmpeg.Error as exc:
        logger.error("audio_duration_probe_failed", extra={"job_id": job_id, "path": audio_path})
        raise AudioSplitError(f"Failed to read audio duration: {audio_path}") from exc
    duration = float(probe.get("format", {}).get("duration") or 0)
    if duration <= 0:
        raise AudioSplitError(f"Audio has no measurable duration: {audio_path}")
    return duration


def parse_silence_output(stderr: str) -> list[Silence]:
    silences = []
    silence_start = None
    for line in stderr.splitlines():
        start_match = SILENCE_START_RE.search(line)
        if start_match:
            silence_start = max(float(start_match.group(1)), 0.0)
            continue
        end_match = SILENCE_END_RE.search(line)
        if end_match and silence_start is not None:
            silences.append(Silence(start=silence_start, end=float(end_match.group(1))))
            silence_start = None
    return silences


def detect_silence(job_id: str, audio_path: str) -> list[Silence]:
    """Silence intervals from ffmpeg's silencedetect; empty on failure so the caller falls back to forced cuts."""
    settings = get_settings()
    try:
        _, stderr = (
            ffmpeg
            .input(audio_path)
            .audio
            .filter("silencedetect", noise=f"{settings.silence_threshold_db}dB", d=settings.silence_duration)
            .output("-", format="null")
            .run(capture_stdout=True, capture_stderr=True)
        )
    except ffmpeg.Error as exc:
        logger.warning("silence_detection_failed", extra={"job_id": job_id, "error": str(exc)})
        return []
    silences = parse_silence_output(stderr.decode("utf-8", errors="replace"))
    logger.debug("silence_detection_completed", extra={"job_id": job_id, "silence_count": len(silences)})
    return silences


def plan_split_points(
    duration: float,
    silences: list[Silence],
    max_chunk_duration: float,
    max_chunk_duration_hard: float,
    min_tail: float = MIN_TAIL_SECONDS,
) -> list[float]:
    """Choose cut times so that no chunk is longer than the hard ceiling.

    Each cut goes at the silence midpoint closest to the soft target that lies
    between half the target and the hard ceiling. When no such silence exists
    the cut is forced at the soft target, mid-speech if necessary. Cuts never
    leave a tail shorter than ``min_tail`` seconds.
    """
    hard = max_chunk_duration_hard
    soft = min(max_chunk_duration, hard)
    min_tail = min(min_tail, hard / 2)
    midpoints = sorted(s.midpoint for s in silences)

    points: list[float] = []
    last = 0.0
    while duration - last > hard:
        lower = last + soft / 2
        upper = min(last + hard, duration - min_tail)
        target = last + soft
        candidates = [m for m in midpoints if lower <= m <= upper]
        if candidates:
            cut = min(candidates, key=lambda m: abs(m - target))
        else:
            cut = min(target, upper)
        points.append(round(cut, 3))
        last = cut
    return points


def split_audio_at_points(job_id: str, audio_path: str, split_points: list[float], output_dir: str) -> list[Chunk]:
    source = Path(audio_path)
    boundaries = [0.0, *split_points]
    chunks = []
    for index, start in enumerate(boundaries):
        end = boundaries[index + 1] if index + 1 < len(boundaries) else None
        chunk_path = str(Path(output_dir) / f"{source.stem}_chunk_{index}{source.suffix}")
        input_kwargs = {"ss": start}
        if end is not None:
            input_kwargs["t"] = end - start
        try:
            (
                ffmpeg
                .input(audio_path, **input_kwargs)
                .output(chunk_path, acodec="copy")
                .run(overwrite_output=True, quiet=True)
            )
        except ffmpeg.Error as exc:
            # The caller never sees a partial list, so cut files are removed here.
            cleanup_chunk_files(job_id, chunks, chunk_path, keep_path=audio_path)
            raise AudioSplitError(f"Failed to cut chunk {index} at {start:.1f}s") from exc
        chunks.append(
            Chunk(
                index=index,
                path=chunk_path,
                start_time=start,
                end_time=end,
                duration=(end - start) if end is not None else None,
            )
        )
        logger.debug("chunk_created", extra={"job_id": job_id, "chunk_index": index, "start_time": start, "end_time": end})
    return chunks


def split_audio_with_silence_detection(job_id: str, audio_path: str) -> list[Chunk]:
    settings = get_settings()
    duration = get_audio_duration(job_id, audio_path)
    silences = detect_silence(job_id, audio_path)
    split_points = plan_split_points(
        duration,
        silences,
        settings.max_chunk_duration,
        settings.max_chunk_duration_hard,
    )

    if not split_points:
        logger.debug("audio_split_not_needed", extra={"job_id": job_id, "duration": duration})
        return [Chunk(index=0, path=audio_path, start_time=0.0, end_time=duration, duration=duration)]

    chunks = split_audio_at_points(job_id, audio_path, split_points, str(Path(audio_path).parent))
    logger.info(
        "audio_split_completed",
        extra={
            "job_id": job_id,
            "chunk_count": len(chunks),
            "method": "silence" if silences else "fixed_interval",
            "duration": duration,
        },
    )
    return chunks


def cleanup_chunk_files(job_id: str, chunks: list[Chunk], processed_path: str | None, keep_path: str | None = None) -> int:
    """Delete chunk files and the converted intermediate. Never raises.

    ``keep_path`` (the uploaded source) is never removed, even when a single
    chunk or the processed path points at it.
    """
    keep = Path(keep_path).resolve() if keep_path else None
    targets = [chunk.path for chunk in chunks]
    if processed_path:
        targets.append(processed_path)

    cleaned = failed = 0
    seen = set()
    for target in targets:
        path = Path(target).resolve()
        if path in seen or path == keep:
            continue
        seen.add(path)
        try:
            if path.exists():
                path.unlink()
                cleaned += 1
        except OSError as exc:
            failed += 1
            logger.warning("chunk_cleanup_failed", extra={"job_id": job_id, "path": str(path), "error": str(exc)})
    logger.debug("chunk_cleanup_completed", extra={"job_id": job_id, "cleaned": cleaned, "failed": failed})
    return cleaned
