import logging
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from medorg.config.models import CategorizeConfig
from medorg.domain.events import ItemFailed, WorkflowFinished
from medorg.domain.models import FileRecord, WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.file_ops import ensure_directory, move_file
from medorg.infrastructure.file_scanner import FileScanner
from medorg.infrastructure.logging import LOG_FILENAME


class FileCategorizer:
    """Moves files into top-level category folders by extension.

    Files already inside a category folder (or the fallback folder) are not
    touched. Unknown extensions go to the fallback folder. A file whose name
    already exists in its target folder is skipped rather than renamed.
    """

    def __init__(
        self,
        config: CategorizeConfig,
        token: CancellationToken,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.token = token
        self.event_bus = event_bus or EventBus()
        self.logger = logging.getLogger(__name__)

    @property
    def category_dirs(self) -> List[str]:
        return sorted(set(self.config.categories.values()) | {self.config.other_dir})

    def category_for(self, path: Path) -> str:
        return self.config.categories.get(path.suffix.lower(), self.config.other_dir)

    def plan(self, directory: Path) -> List[Tuple[FileRecord, str]]:
        scanner = FileScanner(
            skip_dirs=self.category_dirs,
            skip_names=[LOG_FILENAME],
            predicate=lambda p: not p.name.startswith("."),
        )
        return [(record, self.category_for(record.path)) for record in scanner.scan(directory)]

    def run(self, directory: Path) -> WorkflowSummary:
        directory = Path(directory).resolve()
        summary = WorkflowSummary(workflow="categorize")

        planned = self.plan(directory)
        summary.total = len(planned)
        counts: Dict[str, int] = Counter(category for _, category in planned)
        self.logger.info(f"Categorize: {len(planned)} files in {directory} {dict(counts)}")

        for category in counts:
            ensure_directory(directory / category)

        for record, category in planned:
            if self.token.is_set():
                summary.cancelled = True
                self.logger.info("Categorize: cancelled, stopping")
                break
            target = directory / category / record.path.name
            if target.exists():
                self.logger.debug(f"CATEGORY_SKIP: {record.path} ({target} exists)")
                summary.skipped += 1
                continue
            try:
                move_file(record.path, target)
            except OSError as e:
                self.logger.error(f"CATEGORY_MOVE_FAILED: {record.path}: {e}")
                summary.failed += 1
                self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=record.path, error_message=str(e)))
                continue
            self.logger.debug(f"CATEGORY_MOVE: {record.path} -> {target}")
            summary.succeeded += 1
            summary.bump(category)

        self.event_bus.publish(WorkflowFinished(summary=summary))
        return summary
