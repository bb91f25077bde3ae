from enum import Enum
from pathlib import Path
from typing import Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"  # Ctrl+C while the subprocess was running


class FileRecord(BaseModel):
    """A scanned file. Re-created on every scan."""

    model_config = ConfigDict(frozen=True)

    path: Path
    size_bytes: int = Field(ge=0)
    fingerprint: Optional[str] = None


class StreamInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    codec_type: str
    codec_name: str = "unknown"


class MediaInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: float = Field(ge=0.0)
    width: int = 0
    height: int = 0
    fps: float = 0.0
    streams: List[StreamInfo] = Field(default_factory=list)


class SceneEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(ge=0.0)
    score: float = 1.0


class ThumbnailTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    video_path: Path
    timestamp: float = Field(ge=0.0)
    output_path: Path
    index: int = 0


class ThumbnailResult(BaseModel):
    task: ThumbnailTask
    success: bool
    error_message: Optional[str] = None

    @property
    def output_path(self) -> Optional[Path]:
        return self.task.output_path if self.success else None


class EncodeJob(BaseModel):
    """One re-encode job, from admission to completion or cancellation."""

    source_path: Path
    output_path: Path
    status: JobStatus = JobStatus.PENDING
    error_message: Optional[str] = None
    returncode: Optional[int] = None

    @property
    def temp_path(self) -> Path:
        return self.output_path.with_name(f"{self.output_path.name}.tmp")


class ToolResult(BaseModel, Generic[T]):
    """Outcome of one external tool invocation.

    ``returncode`` is None when the tool could not be launched at all. A zero
    return code with ``value`` unset means the output could not be parsed.
    """

    returncode: Optional[int] = None
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.value is not None and self.error is None


class WorkflowSummary(BaseModel):
    workflow: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    degraded: int = 0
    cancelled: bool = False
    details: Dict[str, int] = Field(default_factory=dict)

    def bump(self, key: str, amount: int = 1) -> None:
        self.details[key] = self.details.get(key, 0) + amount


class CleanedName(BaseModel):
    """A video file name with earlier numbering, ids and illegal characters removed."""

    model_config = ConfigDict(frozen=True)

    base_name: str
    extension: str
    has_convert: bool = False
