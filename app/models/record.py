from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class Record(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "records"

    job_id: Mapped[str | None] = mapped_column(ForeignKey("processing_jobs.id", ondelete="SET NULL"), nullable=True, unique=True, index=True)
    file_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    company_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    staff_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    audio_file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    encrypted_stt: Mapped[str] = mapped_column(Text, default="", nullable=False)
    skill_sheet: Mapped[str | None] = mapped_column(Text, nullable=True)
    lor: Mapped[str | None] = mapped_column(Text, nullable=True)
    salesforce: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    skills: Mapped[str | None] = mapped_column(Text, nullable=True)
    hope: Mapped[str | None] = mapped_column(Text, nullable=True)
    quality_status: Mapped[str] = mapped_column(String(16), default="complete", nullable=False)
    chunk_success_rate: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    processing_warnings: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
