import threading
import time
from pathlib import Path
from medorg.domain.models import ThumbnailResult
from medorg.infrastructure.cancellation import CancellationToken
from medorg.pipeline.thumbnails import ThumbnailExtractorPool, build_thumbnail_tasks


def test_build_thumbnail_tasks(tmp_path):
    tasks = build_thumbnail_tasks(Path("/m/v.mp4"), [1.0, 2.5], tmp_path)

    assert [t.index for t in tasks] == [0, 1]
    assert [t.timestamp for t in tasks] == [1.0, 2.5]
    assert [t.output_path.name for t in tasks] == ["thumb_000.jpg", "thumb_001.jpg"]


def test_results_ordered_by_timestamp_regardless_of_completion(tmp_path):
    tasks = build_thumbnail_tasks(Path("v.mp4"), [1.0, 2.0, 3.0, 4.0], tmp_path)

    def extract(task):
        # Later timestamps finish first
        time.sleep(0.02 * (5 - task.timestamp))
        return ThumbnailResult(task=task, success=True)

    results = ThumbnailExtractorPool(extract, CancellationToken(), workers=4).extract_all(tasks)

    assert [r.task.timestamp for r in results] == [1.0, 2.0, 3.0, 4.0]


def test_failure_is_isolated_per_task(tmp_path):
    tasks = build_thumbnail_tasks(Path("v.mp4"), [1.0, 2.0, 3.0], tmp_path)

    def extract(task):
        if task.index == 1:
            raise RuntimeError("decoder crashed")
        if task.index == 2:
            return ThumbnailResult(task=task, success=False, error_message="exit 1")
        return ThumbnailResult(task=task, success=True)

    results = ThumbnailExtractorPool(extract, CancellationToken(), workers=2).extract_all(tasks)

    assert [r.success for r in results] == [True, False, False]
    assert results[1].error_message == "decoder crashed"
    assert results[2].error_message == "exit 1"


def test_pool_is_bounded(tmp_path):
    tasks = build_thumbnail_tasks(Path("v.mp4"), [float(i) for i in range(12)], tmp_path)
    active = 0
    peak = 0
    lock = threading.Lock()

    def extract(task):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1
        return ThumbnailResult(task=task, success=True)

    ThumbnailExtractorPool(extract, CancellationToken(), workers=3).extract_all(tasks)

    assert peak <= 3


def test_cancelled_token_skips_launches(tmp_path):
    tasks = build_thumbnail_tasks(Path("v.mp4"), [1.0, 2.0], tmp_path)
    token = CancellationToken()
    token.set()
    calls = []

    def extract(task):
        calls.append(task)
        return ThumbnailResult(task=task, success=True)

    results = ThumbnailExtractorPool(extract, token).extract_all(tasks)

    assert calls == []
    assert all(not r.success and r.error_message == "cancelled" for r in results)


def test_empty_task_list():
    assert ThumbnailExtractorPool(lambda t: None, CancellationToken()).extract_all([]) == []
