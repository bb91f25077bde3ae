"""Error taxonomy.

Run-level errors (``DirectoryAccessError``) abort a workflow. Everything else
is per-item: logged, counted in the summary, and the batch continues.
"""

from pathlib import Path
from typing import Optional


class MedorgError(Exception):
    pass


class DirectoryAccessError(MedorgError):
    """Target directory cannot be enumerated or an output directory cannot be created."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path


class MediaProbeError(MedorgError):
    def __init__(self, path: Path, reason: str, returncode: Optional[int] = None):
        super().__init__(f"ffprobe failed for {path}: {reason}")
        self.path = path
        self.returncode = returncode


class ExtractionError(MedorgError):
    pass


class CompositionError(MedorgError):
    pass
