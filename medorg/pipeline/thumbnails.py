import concurrent.futures
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from medorg.domain.models import ThumbnailResult, ThumbnailTask
from medorg.infrastructure.cancellation import CancellationToken


def build_thumbnail_tasks(video_path: Path, timestamps: Sequence[float], work_dir: Path) -> List[ThumbnailTask]:
    return [
        ThumbnailTask(
            video_path=video_path,
            timestamp=t,
            output_path=work_dir / f"thumb_{i:03d}.jpg",
            index=i,
        )
        for i, t in enumerate(timestamps)
    ]


class ThumbnailExtractorPool:
    """Runs one extraction subprocess per task on a fixed-size thread pool.

    Pool size is the CPU count, not load-driven: each extraction is a short,
    single-threaded ffmpeg call. A failing task never affects its siblings.
    Results come back sorted by timestamp whatever order tasks finished in.
    """

    def __init__(
        self,
        extract: Callable[[ThumbnailTask], ThumbnailResult],
        token: CancellationToken,
        workers: Optional[int] = None,
    ):
        self.extract = extract
        self.token = token
        self.workers = workers or os.cpu_count() or 1
        self.logger = logging.getLogger(__name__)

    def _run_one(self, task: ThumbnailTask) -> ThumbnailResult:
        if self.token.is_set():
            return ThumbnailResult(task=task, success=False, error_message="cancelled")
        try:
            return self.extract(task)
        except Exception as e:
            return ThumbnailResult(task=task, success=False, error_message=str(e))

    def extract_all(self, tasks: Sequence[ThumbnailTask]) -> List[ThumbnailResult]:
        if not tasks:
            return []
        results: List[ThumbnailResult] = []
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.workers, len(tasks)),
            thread_name_prefix="thumb",
        ) as executor:
            futures = [executor.submit(self._run_one, task) for task in tasks]
            for future in concurrent.futures.as_completed(futures):
                result = future.result()
                if not result.success:
                    self.logger.warning(
                        f"THUMB_FAILED: {result.task.video_path.name} "
                        f"#{result.task.index} @ {result.task.timestamp:.2f}s: {result.error_message}"
                    )
                results.append(result)

        results.sort(key=lambda r: (r.task.timestamp, r.task.index))
        return results
