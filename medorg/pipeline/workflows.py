from enum import Enum
from pathlib import Path
from typing import Optional
from medorg.config.models import AppConfig
from medorg.domain.models import WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.cpu_monitor import LoadSampler, PsutilLoadSampler
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.ffmpeg import FFmpegAdapter
from medorg.infrastructure.ffprobe import FFprobeAdapter
from medorg.pipeline.categorizer import FileCategorizer
from medorg.pipeline.contact_sheet import ContactSheetGenerator
from medorg.pipeline.dedup import DuplicateDetector
from medorg.pipeline.encoder import ReencodeWorkflow
from medorg.pipeline.orphans import OrphanFileMover
from medorg.pipeline.renamer import VideoRenamer


class Workflow(str, Enum):
    ENCODE = "encode"
    DEDUP = "dedup"
    CONTACT_SHEET = "contact-sheet"
    CATEGORIZE = "categorize"
    ORPHANS = "orphans"
    RENAME = "rename"


def run_workflow(
    workflow: Workflow,
    directory: Path,
    config: AppConfig,
    token: CancellationToken,
    event_bus: Optional[EventBus] = None,
    sampler: Optional[LoadSampler] = None,
    ffmpeg_adapter: Optional[FFmpegAdapter] = None,
    ffprobe_adapter: Optional[FFprobeAdapter] = None,
) -> WorkflowSummary:
    """Builds the component for ``workflow`` and runs it on ``directory``."""
    event_bus = event_bus or EventBus()
    video_extensions = config.general.video_extensions

    if workflow == Workflow.ENCODE:
        return ReencodeWorkflow(
            config.encoder,
            video_extensions,
            ffmpeg_adapter or FFmpegAdapter(encoder=config.encoder, contact_sheet=config.contact_sheet),
            sampler or PsutilLoadSampler(),
            token,
            event_bus=event_bus,
        ).run(directory)
    elif workflow == Workflow.DEDUP:
        return DuplicateDetector(config.dedup, token, event_bus=event_bus).run(directory)
    elif workflow == Workflow.CONTACT_SHEET:
        return ContactSheetGenerator(
            config.contact_sheet,
            video_extensions,
            ffprobe_adapter or FFprobeAdapter(),
            ffmpeg_adapter or FFmpegAdapter(encoder=config.encoder, contact_sheet=config.contact_sheet),
            token,
            event_bus=event_bus,
        ).run(directory)
    elif workflow == Workflow.CATEGORIZE:
        return FileCategorizer(config.categorize, token, event_bus=event_bus).run(directory)
    elif workflow == Workflow.ORPHANS:
        return OrphanFileMover(config.orphans, token, event_bus=event_bus).run(directory)
    elif workflow == Workflow.RENAME:
        return VideoRenamer(
            config.rename,
            video_extensions,
            ffprobe_adapter or FFprobeAdapter(),
            token,
            event_bus=event_bus,
        ).run(directory)
    raise ValueError(f"Unknown workflow: {workflow!r}")
