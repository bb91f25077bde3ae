"""Renames videos by duration.

Every video below the directory is probed for its duration, the list is
sorted shortest first, and each file is renamed in place to
``[<index>] <cleaned name>_<uuid>[.convert].<ext>``. Numbering, ids and
illegal characters left by an earlier run are stripped first, so a rerun
renumbers instead of stacking prefixes.
"""

import concurrent.futures
import logging
import re
import uuid
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple
from medorg.config.models import RenameConfig
from medorg.domain.events import FileRenamed, ItemFailed, WorkflowFinished
from medorg.domain.models import CleanedName, FileRecord, WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.ffprobe import FFprobeAdapter
from medorg.infrastructure.file_ops import move_file
from medorg.infrastructure.file_scanner import FileScanner

CONVERT_MARKER = ".convert"
FALLBACK_NAME = "video"

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
_LEADING_INDEX_RE = re.compile(r"^\[\d+\]\s*")
_UUID_BRACKET_RE = re.compile(r"\[" + _UUID + r"\]")
_UUID_SUFFIX_RE = re.compile(r"_" + _UUID)
_ILLEGAL_RE = re.compile(r'[<>:"/\\|?*\[\]]')
_SPACES_RE = re.compile(r"\s+")


def clean_filename(file_name: str) -> CleanedName:
    """Splits ``file_name`` and scrubs its base name.

    Repeated ``.convert`` markers collapse into a flag, the extension is
    lowercased, and a base name that ends up empty becomes ``video``.
    """
    base, dot, extension = file_name.rpartition(".")
    if not dot:
        base, extension = file_name, ""

    has_convert = False
    while base.lower().endswith(CONVERT_MARKER):
        has_convert = True
        base = base[: -len(CONVERT_MARKER)]

    base = _LEADING_INDEX_RE.sub("", base)
    base = _UUID_BRACKET_RE.sub("", base)
    base = _UUID_SUFFIX_RE.sub("", base)
    base = _ILLEGAL_RE.sub(" ", base)
    base = _SPACES_RE.sub(" ", base).strip()

    return CleanedName(base_name=base or FALLBACK_NAME, extension=extension.lower(), has_convert=has_convert)


def format_new_name(index: int, cleaned: CleanedName, new_id: str) -> str:
    name = f"[{index}] {cleaned.base_name}_{new_id}"
    if cleaned.has_convert:
        name += CONVERT_MARKER
    if cleaned.extension:
        name += f".{cleaned.extension}"
    return name


def format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class VideoRenamer:
    def __init__(
        self,
        config: RenameConfig,
        video_extensions: Iterable[str],
        ffprobe_adapter: FFprobeAdapter,
        token: CancellationToken,
        event_bus: Optional[EventBus] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.config = config
        self.video_extensions = list(video_extensions)
        self.ffprobe_adapter = ffprobe_adapter
        self.token = token
        self.event_bus = event_bus or EventBus()
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.logger = logging.getLogger(__name__)

    def _probe(self, record: FileRecord):
        if self.token.is_set():
            return None
        return self.ffprobe_adapter.probe(record.path)

    def collect_durations(self, records: List[FileRecord], summary: WorkflowSummary) -> List[Tuple[float, Path]]:
        """Probes every video in parallel; returns ``(duration, path)`` shortest first."""
        durations: List[Tuple[float, Path]] = []
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix="probe",
        ) as executor:
            futures = {executor.submit(self._probe, record): record for record in records}
            for future in concurrent.futures.as_completed(futures):
                record = futures[future]
                outcome = future.result()
                if outcome is None:
                    continue
                if not outcome.ok:
                    error = outcome.error or "no duration"
                    self.logger.error(f"RENAME_PROBE_FAILED: {record.path.name}: {error}")
                    summary.failed += 1
                    self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=record.path, error_message=error))
                    continue
                durations.append((outcome.value.duration, record.path))
        durations.sort(key=lambda item: (item[0], str(item[1])))
        return durations

    def run(self, directory: Path) -> WorkflowSummary:
        directory = Path(directory).resolve()
        summary = WorkflowSummary(workflow="rename")

        records = FileScanner(extensions=self.video_extensions).scan(directory)
        summary.total = len(records)
        self.logger.info(f"Rename: {len(records)} videos in {directory}")
        if not records:
            self.event_bus.publish(WorkflowFinished(summary=summary))
            return summary

        durations = self.collect_durations(records, summary)
        if self.token.is_set():
            summary.cancelled = True
            self.logger.info("Rename: cancelled while probing, nothing renamed")
            self.event_bus.publish(WorkflowFinished(summary=summary))
            return summary

        for offset, (duration, path) in enumerate(durations):
            if self.token.is_set():
                summary.cancelled = True
                self.logger.info("Rename: cancelled, stopping")
                break
            index = self.config.start_index + offset
            new_path = path.with_name(format_new_name(index, clean_filename(path.name), self.id_factory()))
            if new_path.exists():
                self.logger.debug(f"RENAME_SKIP: {path.name} ({new_path.name} exists)")
                summary.skipped += 1
                continue

            if self.config.dry_run:
                self.logger.info(f"RENAME_PLAN: [{format_duration(duration)}] {path.name} -> {new_path.name}")
            else:
                try:
                    move_file(path, new_path)
                except OSError as e:
                    self.logger.error(f"RENAME_FAILED: {path}: {e}")
                    summary.failed += 1
                    self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=path, error_message=str(e)))
                    continue
                self.logger.info(f"RENAME: [{format_duration(duration)}] {path.name} -> {new_path.name}")
            summary.succeeded += 1
            self.event_bus.publish(FileRenamed(
                path=path,
                new_path=new_path,
                duration=duration,
                dry_run=self.config.dry_run,
            ))

        if self.config.dry_run:
            summary.bump("planned", summary.succeeded)
        self.event_bus.publish(WorkflowFinished(summary=summary))
        return summary
