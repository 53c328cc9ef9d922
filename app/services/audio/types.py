from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class ConversionResult:
    converted: bool
    output_path: str


@dataclass(slots=True, frozen=True)
class Chunk:
    index: int
    path: str
    start_time: float
    end_time: float | None
    duration: float | None


@dataclass(slots=True, frozen=True)
class ChunkResult:
    index: int
    success: bool
    text: str = ""
    error: str | None = None


@dataclass(slots=True, frozen=True)
class QualityReport:
    success_rate: float
    quality_status: str
    meets_threshold: bool
    successful_chunks: list[ChunkResult]
    failed_chunks: list[ChunkResult]
    warnings: list[dict] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class Transcript:
    text: str
    quality: QualityReport


@dataclass(slots=True, frozen=True)
class PersistResult:
    success: bool
    record_id: str | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class JobOutcome:
    success: bool
    record_id: str | None = None
    quality_status: str | None = None
    error: str | None = None
    failed_step: str | None = None
    error_code: str | None = None
