import logging
import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional
from medorg.domain.errors import DirectoryAccessError
from medorg.domain.models import FileRecord


class FileScanner:
    """Lists candidate files below a directory.

    Traversal is sorted so repeated scans yield the same order. ``skip_dirs``
    names folders directly under the scanned root that are left out (category,
    quarantine and output folders); ``skip_names`` are file names ignored at
    any depth. Symlinks are never followed or reported.
    """

    def __init__(
        self,
        extensions: Optional[Iterable[str]] = None,
        recursive: bool = True,
        skip_dirs: Iterable[str] = (),
        skip_names: Iterable[str] = (),
        predicate: Optional[Callable[[Path], bool]] = None,
    ):
        self.extensions = None
        if extensions is not None:
            self.extensions = {(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions}
        self.recursive = recursive
        self.skip_dirs = {name.lower() for name in skip_dirs}
        self.skip_names = set(skip_names)
        self.predicate = predicate
        self.logger = logging.getLogger(__name__)

    def _accepts(self, path: Path) -> bool:
        if path.name in self.skip_names:
            return False
        if self.extensions is not None and path.suffix.lower() not in self.extensions:
            return False
        if self.predicate is not None and not self.predicate(path):
            return False
        return True

    def scan(self, root_dir: Path) -> List[FileRecord]:
        """Returns FileRecords for every accepted file. Raises DirectoryAccessError if root is unreadable."""
        root_dir = Path(root_dir).resolve()
        if not root_dir.is_dir():
            raise DirectoryAccessError(root_dir, "not a directory")

        root_errors: List[OSError] = []

        def _on_error(err: OSError):
            if Path(err.filename or "") == root_dir:
                root_errors.append(err)
            else:
                self.logger.warning(f"Skipping unreadable directory {err.filename}: {err.strerror}")

        records: List[FileRecord] = []
        for root, dirs, files in os.walk(str(root_dir), onerror=_on_error):
            root_path = Path(root)

            if not self.recursive:
                dirs[:] = []
            else:
                if root_path == root_dir:
                    dirs[:] = [d for d in dirs if d.lower() not in self.skip_dirs]
                dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if file_path.is_symlink() or not self._accepts(file_path):
                    continue
                try:
                    stat = file_path.stat()
                except OSError:
                    # Vanished or unreadable between listing and stat
                    continue
                records.append(FileRecord(path=file_path, size_bytes=stat.st_size))

        if root_errors:
            raise DirectoryAccessError(root_dir, root_errors[0].strerror or "cannot list directory")

        return records
