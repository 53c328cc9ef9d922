from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import decrypt_text
from app.db.session import get_db
from app.models.record import Record
from app.schemas.record import RecordRead, RecordSummary
from app.services import cache

router = APIRouter(prefix="/records", tags=["records"])


@router.get("", response_model=list[RecordSummary])
def list_records(
    company_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list:
    key = cache.records_key(company_id, f"limit={limit}:offset={offset}")
    cached = cache.cache_get(key)
    if cached is not None:
        return cached

    rows = db.scalars(
        select(Record)
        .where(Record.company_id == company_id)
        .order_by(Record.date.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    payload = [RecordSummary.model_validate(row).model_dump(mode="json") for row in rows]
    cache.cache_set(key, payload)
    return payload


@router.get("/{record_id}", response_model=RecordRead)
def get_record(record_id: str, db: Session = Depends(get_db)) -> RecordRead:
    record = db.scalar(select(Record).where(Record.id == record_id))
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")
    return RecordRead(
        id=record.id,
        job_id=record.job_id,
        file_id=record.file_id,
        user_id=record.user_id,
        company_id=record.company_id,
        staff_id=record.staff_id,
        audio_file_path=record.audio_file_path,
        stt=decrypt_text(record.encrypted_stt),
        skill_sheet=record.skill_sheet,
        lor=record.lor,
        salesforce=record.salesforce or [],
        skills=record.skills,
        hope=record.hope,
        quality_status=record.quality_status,
        chunk_success_rate=record.chunk_success_rate,
        processing_warnings=record.processing_warnings or [],
        date=record.date,
    )
