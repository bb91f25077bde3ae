"""Contact sheet workflow.

Per video, five stages:
A. probe duration (ffprobe)
B. scene detection (ffmpeg scdet)
C. timestamp selection
D. parallel still extraction into a private temp folder
E. grid composition into ``<dir>/_contact_sheets/<stem>_contact_sheet.jpg``
   (relative-path names when several videos share a stem)

Videos are handled one at a time; parallelism lives in stage D. The temp
folder is removed on every exit path.
"""

import logging
import shutil
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from medorg.config.models import ContactSheetConfig
from medorg.domain.errors import ExtractionError, MediaProbeError, MedorgError
from medorg.domain.events import ContactSheetFinished, ItemFailed, WorkflowFinished
from medorg.domain.models import WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.ffmpeg import FFmpegAdapter
from medorg.infrastructure.ffprobe import FFprobeAdapter
from medorg.infrastructure.file_ops import ensure_directory
from medorg.infrastructure.file_scanner import FileScanner
from medorg.pipeline.compositor import GridCompositor
from medorg.pipeline.thumbnails import ThumbnailExtractorPool, build_thumbnail_tasks
from medorg.pipeline.timestamp_selector import select_timestamps

SHEET_SUFFIX = "_contact_sheet.jpg"


class ContactSheetGenerator:
    def __init__(
        self,
        config: ContactSheetConfig,
        video_extensions: Iterable[str],
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        token: CancellationToken,
        event_bus: Optional[EventBus] = None,
        compositor: Optional[GridCompositor] = None,
    ):
        self.config = config
        self.video_extensions = list(video_extensions)
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.token = token
        self.event_bus = event_bus or EventBus()
        self.compositor = compositor or GridCompositor(
            columns=config.columns,
            rows=config.rows,
            tile_width=config.tile_width,
            tile_height=config.tile_height,
        )
        self.pool = ThumbnailExtractorPool(ffmpeg_adapter.extract_thumbnail, token, workers=config.workers)
        self.logger = logging.getLogger(__name__)

    def sheet_paths(self, videos: List[Path], directory: Path, output_dir: Path) -> Dict[Path, Path]:
        """Maps each video to its sheet, ``<stem>_contact_sheet.jpg``.

        Videos sharing a stem would overwrite or skip each other's sheet, so
        every member of such a group is named after its relative path instead:
        ``sub/clip.mp4`` -> ``sub__clip.mp4_contact_sheet.jpg``.
        """
        by_stem: Dict[str, List[Path]] = defaultdict(list)
        for video_path in videos:
            by_stem[video_path.stem].append(video_path)

        paths: Dict[Path, Path] = {}
        for stem, group in by_stem.items():
            if len(group) == 1:
                paths[group[0]] = output_dir / f"{stem}{SHEET_SUFFIX}"
                continue
            self.logger.warning(f"SHEET_NAME_COLLISION: {len(group)} videos named {stem!r}, using relative paths")
            for video_path in group:
                flat = "__".join(video_path.relative_to(directory).parts)
                paths[video_path] = output_dir / f"{flat}{SHEET_SUFFIX}"
        return paths

    def run(self, directory: Path) -> WorkflowSummary:
        directory = Path(directory).resolve()
        summary = WorkflowSummary(workflow="contact-sheet")

        scanner = FileScanner(extensions=self.video_extensions, skip_dirs=[self.config.output_dir])
        videos = sorted(scanner.scan(directory), key=lambda r: (r.size_bytes, str(r.path)))
        summary.total = len(videos)
        self.logger.info(f"Contact sheets: {len(videos)} videos in {directory}")
        if not videos:
            self.event_bus.publish(WorkflowFinished(summary=summary))
            return summary

        output_dir = ensure_directory(directory / self.config.output_dir)
        sheet_paths = self.sheet_paths([r.path for r in videos], directory, output_dir)

        for record in videos:
            if self.token.is_set():
                summary.cancelled = True
                self.logger.info("Contact sheets: cancelled, stopping before next video")
                break

            video_path = record.path
            sheet_path = sheet_paths[video_path]
            if sheet_path.exists():
                self.logger.info(f"SHEET_SKIP: {video_path.name} (sheet exists)")
                summary.skipped += 1
                continue

            try:
                placed = self.process_video(video_path, sheet_path, output_dir)
            except MedorgError as e:
                self.logger.error(f"SHEET_FAILED: {video_path.name}: {e}")
                summary.failed += 1
                self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=video_path, error_message=str(e)))
                continue
            except Exception as e:
                self.logger.exception(f"SHEET_FAILED: {video_path.name}: unexpected error: {e}")
                summary.failed += 1
                self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=video_path, error_message=str(e)))
                continue

            if placed is None:
                summary.cancelled = True
                break

            summary.succeeded += 1
            if placed < self.config.thumbnail_count:
                summary.degraded += 1
            self.event_bus.publish(ContactSheetFinished(
                video_path=video_path,
                sheet_path=sheet_path,
                tiles=placed,
                expected_tiles=self.config.thumbnail_count,
            ))

        self.event_bus.publish(WorkflowFinished(summary=summary))
        return summary

    def process_video(self, video_path: Path, sheet_path: Path, output_dir: Path) -> Optional[int]:
        """Builds one sheet. Returns tiles placed, or None if cancelled midway."""
        work_dir = output_dir / f".tmp_{video_path.stem}_{uuid.uuid4().hex[:12]}"
        work_dir.mkdir(parents=True)
        try:
            return self._run_stages(video_path, sheet_path, work_dir)
        finally:
            try:
                shutil.rmtree(work_dir)
            except OSError as e:
                self.logger.warning(f"Failed to remove temp folder {work_dir}: {e}")

    def _run_stages(self, video_path: Path, sheet_path: Path, work_dir: Path) -> Optional[int]:
        name = video_path.name

        # A: probe
        probe = self.ffprobe_adapter.probe(video_path)
        if not probe.ok:
            raise MediaProbeError(video_path, probe.error or "unknown error", probe.returncode)
        info = probe.value
        if info.duration < self.config.min_duration_s:
            raise ExtractionError(f"{name}: too short ({info.duration:.2f}s)")
        self.logger.debug(f"SHEET_PROBE: {name} duration={info.duration:.1f}s {info.width}x{info.height}")

        # B: scenes; a failed detection degrades to even sampling
        if self.token.is_set():
            return None
        detection = self.ffmpeg_adapter.detect_scenes(video_path, info)
        if detection.ok:
            scenes = detection.value
        else:
            self.logger.warning(f"SCENE_FAILED: {name}: {detection.error}; using even sampling")
            scenes = []
        self.logger.debug(f"SHEET_SCENES: {name} {len(scenes)} scene changes")

        # C: timestamps
        timestamps = select_timestamps(info.duration, scenes, self.config.thumbnail_count)
        if not timestamps:
            raise ExtractionError(f"{name}: no timestamps selected")

        # D: extraction
        tasks = build_thumbnail_tasks(video_path, timestamps, work_dir)
        results = self.pool.extract_all(tasks)
        if self.token.is_set():
            return None

        # E: composition
        placed = self.compositor.compose(results, sheet_path)
        ok = sum(1 for r in results if r.success)
        self.logger.info(f"SHEET_DONE: {name} tiles={placed}/{self.config.thumbnail_count} extracted={ok}/{len(tasks)}")
        return placed
