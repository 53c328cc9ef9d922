from app.schemas.extraction import WorkflowOutputs
from app.schemas.job import HeartbeatRead, JobChunkRead, JobCreateResponse, JobRead, JobStepRead
from app.schemas.record import RecordRead, RecordSummary

__all__ = [
    "JobCreateResponse",
    "JobRead",
    "JobStepRead",
    "JobChunkRead",
    "HeartbeatRead",
    "RecordRead",
    "RecordSummary",
    "WorkflowOutputs",
]
