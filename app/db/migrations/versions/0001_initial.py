"""Initial schema."""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "processing_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("file_id", sa.String(length=100), nullable=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("staff_id", sa.String(length=100), nullable=True),
        sa.Column("local_file_path", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_step", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("total_chunks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_chunks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timeout_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("timeout_reason", sa.String(length=32), nullable=False, server_default="none"),
        sa.Column("record_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processing_jobs_file_id", "processing_jobs", ["file_id"], unique=False)
    op.create_index("ix_processing_jobs_user_id", "processing_jobs", ["user_id"], unique=False)
    op.create_index("ix_processing_jobs_company_id", "processing_jobs", ["company_id"], unique=False)
    op.create_index("ix_processing_jobs_status", "processing_jobs", ["status"], unique=False)
    op.create_index("ix_processing_jobs_heartbeat_at", "processing_jobs", ["heartbeat_at"], unique=False)

    op.create_table(
        "job_steps",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "job_id", sa.String(length=36), sa.ForeignKey("processing_jobs.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("step_name", sa.String(length=32), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("job_id", "step_name", name="uq_job_steps_job_step"),
    )
    op.create_index("ix_job_steps_job_id", "job_steps", ["job_id"], unique=False)

    op.create_table(
        "chunk_processing",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "job_id", sa.String(length=36), sa.ForeignKey("processing_jobs.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("encrypted_stt_result", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("job_id", "chunk_index", name="uq_chunk_processing_job_index"),
    )
    op.create_index("ix_chunk_processing_job_id", "chunk_processing", ["job_id"], unique=False)

    op.create_table(
        "records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "job_id", sa.String(length=36), sa.ForeignKey("processing_jobs.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("file_id", sa.String(length=100), nullable=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("staff_id", sa.String(length=100), nullable=True),
        sa.Column("audio_file_path", sa.String(length=500), nullable=False),
        sa.Column("encrypted_stt", sa.Text(), nullable=False),
        sa.Column("skill_sheet", sa.Text(), nullable=True),
        sa.Column("lor", sa.Text(), nullable=True),
        sa.Column("salesforce", sa.JSON(), nullable=False),
        sa.Column("skills", sa.Text(), nullable=True),
        sa.Column("hope", sa.Text(), nullable=True),
        sa.Column("quality_status", sa.String(length=16), nullable=False, server_default="complete"),
        sa.Column("chunk_success_rate", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("processing_warnings", sa.JSON(), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_records_job_id", "records", ["job_id"], unique=True)
    op.create_index("ix_records_user_id", "records", ["user_id"], unique=False)
    op.create_index("ix_records_company_id", "records", ["company_id"], unique=False)
    op.create_index("ix_records_staff_id", "records", ["staff_id"], unique=False)


def downgrade() -> None:
    op.drop_table("records")
    op.drop_table("chunk_processing")
    op.drop_table("job_steps")
    op.drop_table("processing_jobs")
