import errno
import logging
import os
import shutil
import uuid
from pathlib import Path
from medorg.domain.errors import DirectoryAccessError

logger = logging.getLogger(__name__)


def ensure_directory(path: Path) -> Path:
    """Creates ``path`` (and parents). Failure is run-level."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryAccessError(path, f"cannot create directory: {e.strerror or e}") from e
    if not path.is_dir():
        raise DirectoryAccessError(path, "exists but is not a directory")
    return path


def unique_destination(directory: Path, file_name: str) -> Path:
    """First free ``name``, ``name_1``, ``name_2``... in ``directory``."""
    candidate = directory / file_name
    if not candidate.exists():
        return candidate
    stem = Path(file_name).stem
    suffix = Path(file_name).suffix
    counter = 1
    while True:
        candidate = directory / f"{stem}_{counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


def move_file(source: Path, destination: Path) -> Path:
    """Moves ``source`` to ``destination`` without overwriting.

    Same filesystem: a single ``os.rename``. Across filesystems (EXDEV) the
    data is copied to a hidden temp name next to the destination, renamed into
    place, and only then is the source deleted, so the destination never holds
    a partial file. Callers serialize moves into a shared folder; the
    existence check is not atomic against concurrent movers.
    """
    if destination.exists():
        raise FileExistsError(errno.EEXIST, "Destination already exists", str(destination))
    try:
        os.rename(source, destination)
        return destination
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    logger.debug(f"MOVE_COPY: {source} -> {destination} (cross-device)")
    staging = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.part")
    try:
        shutil.copy2(source, staging)
        os.replace(staging, destination)
    except BaseException:
        if staging.exists():
            staging.unlink()
        raise
    source.unlink()
    return destination


def move_into(source: Path, directory: Path) -> Path:
    """Moves ``source`` into ``directory`` under a collision-free name."""
    destination = unique_destination(directory, source.name)
    return move_file(source, destination)


def remove_if_exists(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
