import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional
from medorg.config.models import OrphanConfig
from medorg.domain.events import ItemFailed, WorkflowFinished
from medorg.domain.models import WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.file_ops import ensure_directory, move_file
from medorg.infrastructure.file_scanner import FileScanner
from medorg.infrastructure.logging import LOG_FILENAME


class OrphanFileMover:
    """Moves files that share their stem with no sibling into ``orphan_files/``.

    Only the top level of the directory is considered; ``clip.mp4`` and
    ``clip.srt`` form a pair and stay, a lone ``notes.txt`` moves. Hidden files
    are ignored.
    """

    def __init__(
        self,
        config: OrphanConfig,
        token: CancellationToken,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.token = token
        self.event_bus = event_bus or EventBus()
        self.logger = logging.getLogger(__name__)

    def group_by_stem(self, directory: Path) -> Dict[str, List[Path]]:
        scanner = FileScanner(
            recursive=False,
            skip_names=[LOG_FILENAME],
            predicate=lambda p: not p.name.startswith(".") and bool(p.stem),
        )
        groups: Dict[str, List[Path]] = defaultdict(list)
        for record in scanner.scan(directory):
            groups[record.path.stem].append(record.path)
        return dict(groups)

    def run(self, directory: Path) -> WorkflowSummary:
        directory = Path(directory).resolve()
        summary = WorkflowSummary(workflow="orphans")

        groups = self.group_by_stem(directory)
        orphans = sorted(files[0] for files in groups.values() if len(files) == 1)
        summary.total = sum(len(files) for files in groups.values())
        summary.bump("paired", summary.total - len(orphans))
        self.logger.info(f"Orphans: {len(groups)} groups, {len(orphans)} orphans in {directory}")
        if not orphans:
            self.event_bus.publish(WorkflowFinished(summary=summary))
            return summary

        orphan_dir = ensure_directory(directory / self.config.orphan_dir)
        for path in orphans:
            if self.token.is_set():
                summary.cancelled = True
                self.logger.info("Orphans: cancelled, stopping")
                break
            target = orphan_dir / path.name
            if target.exists():
                self.logger.debug(f"ORPHAN_SKIP: {path.name} ({target} exists)")
                summary.skipped += 1
                continue
            try:
                move_file(path, target)
            except OSError as e:
                self.logger.error(f"ORPHAN_MOVE_FAILED: {path}: {e}")
                summary.failed += 1
                self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=path, error_message=str(e)))
                continue
            self.logger.debug(f"ORPHAN_MOVE: {path.name} -> {target}")
            summary.succeeded += 1

        self.event_bus.publish(WorkflowFinished(summary=summary))
        return summary
