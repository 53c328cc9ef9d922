import logging
import re
import uuid
from pathlib import Path

from fastapi import HTTPException, UploadFile, status

from app.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".mp3", ".m4a", ".wav", ".aac", ".flac", ".ogg", ".wma", ".webm", ".mp4"}
READ_BLOCK_BYTES = 1024 * 1024
COMPANY_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def audio_dir_for(company_id: str) -> Path:
    if not COMPANY_ID_PATTERN.fullmatch(company_id):
        raise ValueError(f"Invalid company id: {company_id!r}")
    root = Path(get_settings().upload_dir).resolve()
    directory = (root / company_id).resolve()
    if not directory.is_relative_to(root):
        raise ValueError(f"Company directory escapes the upload root: {company_id!r}")
    directory.mkdir(parents=True, exist_ok=True)
    return directory


async def save_upload_file(file: UploadFile, company_id: str) -> str:
    """Stream an uploaded recording to disk and return its path.

    Stored as ``<upload_dir>/<company_id>/<uuid><ext>``; the file is kept for
    the lifetime of the record that references it.
    """
    ext = Path(file.filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported audio format: {ext or 'none'}")
    try:
        directory = audio_dir_for(company_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    limit = get_settings().max_upload_size_mb * 1024 * 1024
    destination = directory / f"{uuid.uuid4()}{ext}"
    written = 0
    try:
        with destination.open("wb") as handle:
            while block := await file.read(READ_BLOCK_BYTES):
                written += len(block)
                if written > limit:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"Audio exceeds {get_settings().max_upload_size_mb} MB",
                    )
                handle.write(block)
        if written == 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    except HTTPException:
        destination.unlink(missing_ok=True)
        raise
    finally:
        await file.close()

    logger.info("audio_upload_saved", extra={"path": str(destination), "size_bytes": written, "company_id": company_id})
    return str(destination)


def delete_file_if_exists(path: str) -> None:
    Path(path).unlink(missing_ok=True)
