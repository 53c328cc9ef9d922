import logging
from pathlib import Path

import ffmpeg

from app.services.audio.errors import AudioConversionError
from app.services.audio.types import ConversionResult

logger = logging.getLogger(__name__)

TARGET_FORMAT = ".mp3"
TARGET_BITRATE = "128k"


def needs_conversion(file_path: str) -> bool:
    return Path(file_path).suffix.lower() != TARGET_FORMAT


def convert_to_mp3(job_id: str, input_path: str) -> ConversionResult:
    """Transcode to mono constant-bitrate MP3 next to the input file.

    The input is left in place; the converted file is a temporary owned by
    the job and is removed during cleanup.
    """
    if not needs_conversion(input_path):
        logger.debug("audio_already_canonical", extra={"job_id": job_id, "path": input_path})
        return ConversionResult(converted=False, output_path=input_path)

    output_path = str(Path(input_path).with_suffix(TARGET_FORMAT))
    logger.info(
        "audio_conversion_started",
        extra={"job_id": job_id, "input_format": Path(input_path).suffix.lower(), "output_path": output_path},
    )
    try:
        (
            ffmpeg
            .input(input_path)
            .output(output_path, acodec="libmp3lame", ac=1, audio_bitrate=TARGET_BITRATE, format="mp3")
            .run(overwrite_output=True, quiet=True)
        )
    except ffmpeg.Error as exc:
        stderr = exc.stderr.decode("utf-8", errors="replace").strip() if exc.stderr else str(exc)
        logger.error("audio_conversion_failed", extra={"job_id": job_id, "path": input_path, "error": stderr[-500:]})
        raise AudioConversionError(f"Audio conversion failed: {stderr[-500:]}") from exc

    logger.info("audio_conversion_completed", extra={"job_id": job_id, "output_path": output_path})
    return ConversionResult(converted=True, output_path=output_path)


def get_audio_info(job_id: str, file_path: str) -> dict:
    try:
        probe = ffmpeg.probe(file_path)
    except ffmpeg.Error as exc:
        logger.error("audio_probe_failed", extra={"job_id": job_id, "path": file_path})
        raise AudioConversionError(f"Failed to get audio info: {file_path}") from exc
    fmt = probe.get("format", {})
    streams = [s for s in probe.get("streams", []) if s.get("codec_type") == "audio"]
    stream = streams[0] if streams else {}
    return {
        "duration": float(fmt.get("duration") or 0),
        "format": fmt.get("format_name", "unknown"),
        "bitrate": int(fmt.get("bit_rate") or 0),
        "channels": int(stream.get("channels") or 0),
        "sample_rate": int(stream.get("sample_rate") or 0),
    }
