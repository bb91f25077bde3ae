"""Content-based duplicate detection.

Two phases:

1. Hash, in parallel, every file whose size it shares with another candidate.
   A file with a unique size cannot have a duplicate and is never read.
2. Walk the hashed files in scan order on a single thread and apply each
   decision to the fingerprint index: first sighting keeps the file, later
   sightings of a digest whose canonical file still exists and still holds
   that content are moved into the quarantine folder. A canonical file that
   vanished or changed hands its entry to the current file instead.

The index is persisted in the scanned directory so incremental reruns keep
the canonical copies chosen earlier.
"""

import concurrent.futures
import functools
import logging
from collections import Counter
from pathlib import Path
from typing import Callable, Dict, List, Optional
from medorg.config.models import DedupConfig
from medorg.domain.events import DuplicateFound, ItemFailed, WorkflowFinished
from medorg.domain.models import FileRecord, WorkflowSummary
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.file_ops import ensure_directory, move_into
from medorg.infrastructure.file_scanner import FileScanner
from medorg.infrastructure.fingerprint_index import FingerprintIndex
from medorg.infrastructure.hashing import hash_file
from medorg.infrastructure.logging import LOG_FILENAME


class DuplicateDetector:
    def __init__(
        self,
        config: DedupConfig,
        token: CancellationToken,
        event_bus: Optional[EventBus] = None,
        hash_func: Optional[Callable[[Path], str]] = None,
    ):
        self.config = config
        self.token = token
        self.event_bus = event_bus or EventBus()
        self.hash_func = hash_func or functools.partial(hash_file, chunk_size=config.chunk_size)
        self.logger = logging.getLogger(__name__)

    def _hash(self, path: Path) -> Optional[str]:
        if self.token.is_set():
            return None
        return self.hash_func(path)

    def select_candidates(self, records: List[FileRecord], index: FingerprintIndex) -> List[FileRecord]:
        """Files worth hashing: those sharing a size with another file or an indexed original."""
        sizes = Counter(r.size_bytes for r in records)
        scanned = {r.path for r in records}
        indexed_sizes = set()
        for digest in index.snapshot():
            canonical = index.lookup(digest)
            if canonical is None or canonical in scanned:
                continue
            try:
                indexed_sizes.add(canonical.stat().st_size)
            except OSError:
                continue
        return [r for r in records if sizes[r.size_bytes] >= 2 or r.size_bytes in indexed_sizes]

    def hash_candidates(self, candidates: List[FileRecord], summary: WorkflowSummary) -> Dict[Path, str]:
        digests: Dict[Path, str] = {}
        if not candidates:
            return digests
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix="hash",
        ) as executor:
            futures = {}
            for record in candidates:
                if self.token.is_set():
                    break
                futures[executor.submit(self._hash, record.path)] = record
            for future in concurrent.futures.as_completed(futures):
                record = futures[future]
                try:
                    digest = future.result()
                except OSError as e:
                    self.logger.error(f"HASH_FAILED: {record.path}: {e}")
                    summary.failed += 1
                    self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=record.path, error_message=str(e)))
                    continue
                if digest is not None:
                    digests[record.path] = digest
        return digests

    def run(self, directory: Path) -> WorkflowSummary:
        directory = Path(directory).resolve()
        summary = WorkflowSummary(workflow="dedup")

        index = FingerprintIndex.load(directory / self.config.index_filename, directory)
        scanner = FileScanner(
            skip_dirs=[self.config.quarantine_dir],
            skip_names=[index.index_path.name, index.temp_path.name, LOG_FILENAME],
        )
        records = scanner.scan(directory)
        summary.total = len(records)
        try:
            candidates = self.select_candidates(records, index)
            summary.bump("unique", len(records) - len(candidates))
            summary.succeeded += len(records) - len(candidates)
            self.logger.info(f"DEDUP_SCAN: {len(records)} files, {len(candidates)} share a size")

            digests = self.hash_candidates(candidates, summary)
            summary.bump("hashed", len(digests))
            if self.token.is_set():
                summary.cancelled = True
                self.logger.info("DEDUP_CANCELLED: stopping after hash phase")
                return summary

            self.apply_decisions(candidates, digests, index, directory, summary)
        finally:
            index.save()
            self.event_bus.publish(WorkflowFinished(summary=summary))
        return summary

    def _still_holds(
        self,
        canonical: Path,
        digest: str,
        size: int,
        digests: Dict[Path, str],
        rehashed: Dict[Path, Optional[str]],
    ) -> bool:
        """Whether the indexed canonical file still has content ``digest``.

        Files hashed in this run are answered from ``digests``. Anything else
        (a canonical outside the scan, or one whose size is now unique) is
        checked by size first and re-hashed only when the size still matches.
        """
        if canonical in digests:
            return digests[canonical] == digest
        if canonical not in rehashed:
            try:
                if canonical.stat().st_size != size:
                    rehashed[canonical] = None
                else:
                    rehashed[canonical] = self.hash_func(canonical)
            except OSError as e:
                self.logger.warning(f"CANONICAL_UNREADABLE: {canonical}: {e}")
                rehashed[canonical] = None
        return rehashed[canonical] == digest

    def apply_decisions(
        self,
        candidates: List[FileRecord],
        digests: Dict[Path, str],
        index: FingerprintIndex,
        directory: Path,
        summary: WorkflowSummary,
    ) -> None:
        # A file whose content changed must not keep vouching for its old digest
        for path, digest in digests.items():
            dropped = index.forget_stale(path, digest)
            if dropped:
                self.logger.debug(f"INDEX_STALE: {path.name} dropped {dropped} outdated entries")

        quarantine: Optional[Path] = None
        rehashed: Dict[Path, Optional[str]] = {}
        for record in candidates:
            if self.token.is_set():
                summary.cancelled = True
                self.logger.info("DEDUP_CANCELLED: stopping decision phase")
                return
            digest = digests.get(record.path)
            if digest is None:
                continue
            path = record.path
            canonical = index.lookup(digest)

            if canonical is None:
                index.insert(digest, path)
                summary.bump("indexed")
                summary.succeeded += 1
            elif canonical == path:
                summary.bump("known")
                summary.succeeded += 1
            elif not canonical.exists():
                self.logger.info(f"INDEX_REPAIR: {digest[:12]} {canonical} -> {path}")
                index.insert(digest, path)
                summary.bump("repaired")
                summary.succeeded += 1
            elif not self._still_holds(canonical, digest, record.size_bytes, digests, rehashed):
                self.logger.info(f"INDEX_STALE: {canonical} no longer holds {digest[:12]}, now {path}")
                index.insert(digest, path)
                summary.bump("repaired")
                summary.succeeded += 1
            else:
                if quarantine is None:
                    quarantine = ensure_directory(directory / self.config.quarantine_dir)
                try:
                    moved_to = move_into(path, quarantine)
                except OSError as e:
                    self.logger.error(f"DUPLICATE_MOVE_FAILED: {path}: {e}")
                    summary.failed += 1
                    self.event_bus.publish(ItemFailed(workflow=summary.workflow, path=path, error_message=str(e)))
                    continue
                self.logger.info(f"DUPLICATE: {path} == {canonical} -> {moved_to}")
                summary.bump("duplicates")
                self.event_bus.publish(DuplicateFound(path=path, original=canonical, moved_to=moved_to))
