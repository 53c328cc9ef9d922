from app.services.audio.orchestrator import process_audio_job
from app.services.audio.types import JobOutcome

__all__ = ["process_audio_job", "JobOutcome"]
