class ProcessingError(Exception):
    """Step-local fatal error; the orchestrator attributes it to the active step."""

    code: str | None = None

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class AudioConversionError(ProcessingError):
    code = "AUDIO_CONVERSION_FAILED"


class AudioSplitError(ProcessingError):
    code = "AUDIO_SPLIT_FAILED"


class TranscriptionError(ProcessingError):
    code = "CHUNK_PROCESS_FAILED"


class WorkflowError(ProcessingError):
    code = "WORKFLOW_FAILED"


class PersistenceError(ProcessingError):
    code = "PERSIST_FAILED"


class InsufficientSuccessRateError(ProcessingError):
    code = "INSUFFICIENT_SUCCESS_RATE"

    def __init__(self, success_rate: float, threshold: float) -> None:
        super().__init__(
            f"{self.code}: Success rate {success_rate * 100:.1f}% is below minimum threshold {threshold * 100:.1f}%"
        )
        self.success_rate = success_rate
        self.threshold = threshold
