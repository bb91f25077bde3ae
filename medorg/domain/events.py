"""Domain events for the media workflows.

Events flow through the EventBus so the pipeline never talks to the console
directly. See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import EncodeJob, WorkflowSummary


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a specific encode job."""

    job: EncodeJob


class JobStarted(JobEvent):
    """Emitted when the scheduler admits a job."""

    pass


class JobCompleted(JobEvent):
    pass


class JobFailed(JobEvent):
    """Emitted when a job fails; the source has been moved to the fail folder."""

    error_message: str


class JobInterrupted(JobEvent):
    """Emitted when a running job is terminated by cancellation."""

    pass


class DuplicateFound(Event):
    path: Path
    original: Path
    moved_to: Path


class ContactSheetFinished(Event):
    video_path: Path
    sheet_path: Path
    tiles: int
    expected_tiles: int

    @property
    def degraded(self) -> bool:
        return self.tiles < self.expected_tiles


class FileRenamed(Event):
    """Emitted per renamed video; with ``dry_run`` nothing was moved."""

    path: Path
    new_path: Path
    duration: float
    dry_run: bool = False


class ItemFailed(Event):
    """Per-item failure outside the encode scheduler (probe, hash, move)."""

    workflow: str
    path: Path
    error_message: str


class WorkflowFinished(Event):
    summary: WorkflowSummary
