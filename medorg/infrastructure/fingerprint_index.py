"""Persisted fingerprint -> canonical path mapping for duplicate detection.

The index lives as a JSON sidecar in the scanned directory::

    {"version": 1, "entries": {"<sha256 hex>": "relative/posix/path", ...}}

Paths are stored relative to the scanned directory. Writes go to a temp file
in the same directory which is fsync'ed and then ``os.replace``d over the
index, so a crash leaves either the old index or the new one. Anything that
fails to decode into the expected shape is treated as an empty index.
"""

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Dict, Optional

INDEX_VERSION = 1
_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


class FingerprintIndex:
    def __init__(self, index_path: Path, base_dir: Path, entries: Optional[Dict[str, str]] = None):
        self.index_path = Path(index_path)
        self.base_dir = Path(base_dir)
        self._entries: Dict[str, str] = dict(entries or {})
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def temp_path(self) -> Path:
        return self.index_path.with_name(f"{self.index_path.name}.tmp")

    @classmethod
    def load(cls, index_path: Path, base_dir: Path) -> "FingerprintIndex":
        logger = logging.getLogger(__name__)
        index_path = Path(index_path)
        if not index_path.exists():
            logger.info(f"INDEX_NEW: {index_path} (first run)")
            return cls(index_path, base_dir)

        try:
            data = json.loads(index_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"INDEX_CORRUPT: {index_path} unreadable, starting empty: {e}")
            return cls(index_path, base_dir)

        if not isinstance(data, dict) or data.get("version") != INDEX_VERSION or not isinstance(data.get("entries"), dict):
            logger.warning(f"INDEX_CORRUPT: {index_path} has unexpected layout, starting empty")
            return cls(index_path, base_dir)

        entries = {}
        dropped = 0
        for digest, rel_path in data["entries"].items():
            if isinstance(digest, str) and _DIGEST_RE.match(digest) and isinstance(rel_path, str) and rel_path:
                entries[digest] = rel_path
            else:
                dropped += 1
        if dropped:
            logger.warning(f"INDEX_LOAD: dropped {dropped} malformed entries from {index_path}")
        logger.info(f"INDEX_LOAD: {len(entries)} entries from {index_path}")
        return cls(index_path, base_dir, entries)

    def _to_stored(self, path: Path) -> str:
        path = Path(path)
        try:
            return path.relative_to(self.base_dir).as_posix()
        except ValueError:
            return str(path)

    def _to_path(self, stored: str) -> Path:
        candidate = Path(stored)
        return candidate if candidate.is_absolute() else self.base_dir / candidate

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def lookup(self, digest: str) -> Optional[Path]:
        with self._lock:
            stored = self._entries.get(digest)
        return self._to_path(stored) if stored is not None else None

    def insert(self, digest: str, path: Path) -> None:
        """Maps ``digest`` to ``path``, replacing any previous mapping for the digest."""
        stored = self._to_stored(path)
        with self._lock:
            self._entries[digest] = stored

    def forget_stale(self, path: Path, current_digest: str) -> int:
        """Drops entries claiming ``path`` under a digest other than its current one."""
        stored = self._to_stored(path)
        with self._lock:
            stale = [d for d, p in self._entries.items() if p == stored and d != current_digest]
            for digest in stale:
                del self._entries[digest]
        return len(stale)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def save(self) -> None:
        payload = {"version": INDEX_VERSION, "entries": self.snapshot()}
        tmp_path = self.temp_path
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.index_path)
        except BaseException:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        self.logger.info(f"INDEX_SAVE: {len(payload['entries'])} entries to {self.index_path}")
