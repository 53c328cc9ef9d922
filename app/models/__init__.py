from app.models.job_chunk import JobChunk
from app.models.job_step import JobStep
from app.models.processing_job import ProcessingJob
from app.models.record import Record

__all__ = ["ProcessingJob", "JobStep", "JobChunk", "Record"]
