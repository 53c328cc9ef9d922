from datetime import datetime

from pydantic import BaseModel


class RecordRead(BaseModel):
    id: str
    job_id: str | None
    file_id: str | None
    user_id: str
    company_id: str
    staff_id: str | None
    audio_file_path: str
    stt: str
    skill_sheet: str | None
    lor: str | None
    salesforce: list[str]
    skills: str | None
    hope: str | None
    quality_status: str
    chunk_success_rate: float
    processing_warnings: list[dict]
    date: datetime


class RecordSummary(BaseModel):
    id: str
    job_id: str | None
    staff_id: str | None
    quality_status: str
    chunk_success_rate: float
    date: datetime

    model_config = {"from_attributes": True}
