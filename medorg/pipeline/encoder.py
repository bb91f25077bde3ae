import logging
from pathlib import Path
from typing import Iterable, Optional
from medorg.config.models import EncoderConfig
from medorg.domain.events import WorkflowFinished
from medorg.domain.models import EncodeJob, JobStatus, WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.cpu_monitor import LoadSampler
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.ffmpeg import FFmpegAdapter
from medorg.infrastructure.file_scanner import FileScanner
from medorg.pipeline.scheduler import AdaptiveJobScheduler


class ReencodeWorkflow:
    """Re-encodes every video below a directory to HEVC + FLAC Matroska.

    Outputs land next to their sources as ``<stem>.convert.mkv``. Sources that
    already have an output, and the outputs themselves, are left alone, so
    a rerun only picks up what is new or previously interrupted. Smallest
    files go first.
    """

    def __init__(
        self,
        config: EncoderConfig,
        video_extensions: Iterable[str],
        ffmpeg_adapter: FFmpegAdapter,
        sampler: LoadSampler,
        token: CancellationToken,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.video_extensions = list(video_extensions)
        self.ffmpeg_adapter = ffmpeg_adapter
        self.sampler = sampler
        self.token = token
        self.event_bus = event_bus or EventBus()
        self.logger = logging.getLogger(__name__)

    def build_jobs(self, directory: Path, summary: WorkflowSummary):
        scanner = FileScanner(
            extensions=self.video_extensions,
            skip_dirs=[self.config.fail_dir, self.config.finish_dir],
            predicate=lambda p: not self.ffmpeg_adapter.is_encode_output(p),
        )
        records = sorted(scanner.scan(directory), key=lambda r: (r.size_bytes, str(r.path)))
        summary.total = len(records)

        jobs = []
        for record in records:
            output_path = self.ffmpeg_adapter.output_path_for(record.path)
            if output_path.exists():
                self.logger.info(f"ENCODE_SKIP: {record.path.name} (output exists)")
                summary.skipped += 1
                continue
            jobs.append(EncodeJob(source_path=record.path, output_path=output_path))
        return jobs

    def run(self, directory: Path) -> WorkflowSummary:
        directory = Path(directory).resolve()
        summary = WorkflowSummary(workflow="encode")
        jobs = self.build_jobs(directory, summary)
        self.logger.info(f"Encode: {len(jobs)} jobs, {summary.skipped} skipped in {directory}")

        scheduler = AdaptiveJobScheduler(
            runner=self.ffmpeg_adapter,
            sampler=self.sampler,
            token=self.token,
            fail_dir=directory / self.config.fail_dir,
            threshold=self.config.cpu_threshold,
            poll_interval=self.config.poll_interval_s,
            event_bus=self.event_bus,
            post_encode_action=self.config.post_encode_action,
            finish_dir=directory / self.config.finish_dir,
        )
        for job in scheduler.run(jobs):
            if job.status == JobStatus.COMPLETED:
                summary.succeeded += 1
            elif job.status == JobStatus.FAILED:
                summary.failed += 1
            elif job.status == JobStatus.INTERRUPTED:
                summary.bump("interrupted")
            elif job.status == JobStatus.PENDING:
                summary.bump("not_started")

        summary.cancelled = self.token.is_set()
        self.event_bus.publish(WorkflowFinished(summary=summary))
        return summary
