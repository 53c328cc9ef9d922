from datetime import datetime

from pydantic import BaseModel


class JobStepRead(BaseModel):
    step_name: str
    step_order: int
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None
    metadata_json: dict | None
    error_message: str | None

    model_config = {"from_attributes": True}


class JobChunkRead(BaseModel):
    chunk_index: int
    status: str
    error_message: str | None
    retry_count: int

    model_config = {"from_attributes": True}


class JobRead(BaseModel):
    id: str
    file_id: str | None
    user_id: str
    company_id: str
    staff_id: str | None
    status: str
    progress: int
    current_step: str | None
    error_message: str | None
    error_code: str | None
    total_chunks: int
    completed_chunks: int
    attempts: int
    max_attempts: int
    timeout_reason: str
    record_id: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    steps: list[JobStepRead] = []
    chunks: list[JobChunkRead] = []

    model_config = {"from_attributes": True}


class JobCreateResponse(BaseModel):
    job_id: str


class HeartbeatRead(BaseModel):
    id: str
    status: str
    started_at: datetime | None
    heartbeat_at: datetime | None
    timeout_at: datetime | None
    attempts: int
    max_attempts: int
    timeout_reason: str
    seconds_since_heartbeat: int | None
    seconds_until_timeout: int | None
