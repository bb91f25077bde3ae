"""Deterministic choice of sample timestamps for a contact sheet.

Scene cuts come first because the frame right after a cut is the most
representative picture of a shot. Remaining slots are filled with evenly
spaced points, skipping any that would land within ``epsilon`` of a chosen
timestamp. Without scenes the result is plain even sampling.
"""

import bisect
from typing import Iterable, List, Sequence, Union
from medorg.domain.models import SceneEvent

DEFAULT_COUNT = 54
DEFAULT_EPSILON = 0.1
# Each fill round doubles the grid density; bounded so tiny durations terminate
MAX_FILL_ROUNDS = 6


def _pick_evenly(items: Sequence[float], n: int) -> List[float]:
    if n <= 0 or not items:
        return []
    if n >= len(items):
        return list(items)
    if n == 1:
        return [items[len(items) // 2]]
    step = (len(items) - 1) / (n - 1)
    return [items[round(i * step)] for i in range(n)]


def _is_clear(chosen: List[float], t: float, epsilon: float) -> bool:
    """``chosen`` is sorted; only the neighbours around ``t`` can be too close."""
    pos = bisect.bisect_left(chosen, t)
    if pos < len(chosen) and chosen[pos] - t < epsilon:
        return False
    if pos > 0 and t - chosen[pos - 1] < epsilon:
        return False
    return True


def _scene_candidates(duration: float, scenes: Iterable[Union[SceneEvent, float]], epsilon: float) -> List[float]:
    times = sorted(
        t for t in (s.timestamp if isinstance(s, SceneEvent) else float(s) for s in scenes)
        if 0.0 < t < duration
    )
    candidates: List[float] = []
    for t in times:
        if not candidates or t - candidates[-1] >= epsilon:
            candidates.append(t)
    return candidates


def select_timestamps(
    duration: float,
    scenes: Iterable[Union[SceneEvent, float]] = (),
    count: int = DEFAULT_COUNT,
    epsilon: float = DEFAULT_EPSILON,
) -> List[float]:
    """Returns up to ``count`` distinct, ascending timestamps in ``[0, duration)``."""
    if duration <= 0 or count <= 0:
        return []

    # Keep the even grid (spacing duration/count) from colliding with itself
    epsilon = min(epsilon, duration / (2 * count))

    chosen = _pick_evenly(_scene_candidates(duration, scenes, epsilon), count)

    grid = count
    for _ in range(MAX_FILL_ROUNDS):
        missing = count - len(chosen)
        if missing <= 0:
            break
        feasible = []
        for i in range(grid):
            t = duration * (i + 0.5) / grid
            if _is_clear(chosen, t, epsilon):
                feasible.append(t)
        for t in _pick_evenly(feasible, missing):
            # Dense grids can put two picks within epsilon of each other
            if _is_clear(chosen, t, epsilon):
                bisect.insort(chosen, t)
        grid *= 2

    return chosen
