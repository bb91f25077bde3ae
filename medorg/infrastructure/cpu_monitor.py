from typing import Protocol

import psutil


class LoadSampler(Protocol):
    def load(self) -> float:
        """Current aggregate CPU utilization as a fraction 0.0-1.0."""
        ...


class PsutilLoadSampler:
    """Samples system-wide CPU utilization through psutil.

    ``cpu_percent(interval=None)`` reports usage since the previous call, so
    the constructor primes it once; the first real sample is then meaningful.
    """

    def __init__(self, prime_interval: float = 0.2):
        psutil.cpu_percent(interval=prime_interval)

    def load(self) -> float:
        percent = psutil.cpu_percent(interval=None)
        return max(0.0, min(1.0, percent / 100.0))
