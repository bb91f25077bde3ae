import json
from pathlib import Path
from medorg.config.models import DedupConfig
from medorg.domain.events import DuplicateFound, ItemFailed, WorkflowFinished
from medorg.infrastructure.fingerprint_index import FingerprintIndex
from medorg.infrastructure.hashing import hash_file
from medorg.pipeline.dedup import DuplicateDetector

QUARANTINE = "duplication_file"
INDEX_NAME = ".medorg_fingerprints.json"


def _write(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def _load_index(directory: Path) -> FingerprintIndex:
    return FingerprintIndex.load(directory / INDEX_NAME, directory)


def _digest_of(data: bytes, tmp_path: Path) -> str:
    return hash_file(_write(tmp_path / "digest_sample", data))


class CountingHash:
    def __init__(self):
        self.paths = []

    def __call__(self, path):
        self.paths.append(path.name)
        return hash_file(path)


def test_identical_content_is_moved_to_quarantine(media_dir, token):
    _write(media_dir / "a.bin", b"same content")
    _write(media_dir / "b.bin", b"same content")
    _write(media_dir / "c.bin", b"different, longer content")

    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert (media_dir / "a.bin").exists()
    assert not (media_dir / "b.bin").exists()
    assert (media_dir / QUARANTINE / "b.bin").read_bytes() == b"same content"
    assert (media_dir / "c.bin").exists()
    assert summary.total == 3
    assert summary.details["duplicates"] == 1
    assert summary.details["unique"] == 1
    assert summary.details["indexed"] == 1
    assert summary.succeeded == 2
    assert summary.failed == 0


def test_same_size_different_content_is_kept(media_dir, token):
    _write(media_dir / "a.bin", b"aaaa")
    _write(media_dir / "b.bin", b"bbbb")

    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert (media_dir / "a.bin").exists()
    assert (media_dir / "b.bin").exists()
    assert not (media_dir / QUARANTINE).exists()
    assert summary.details["indexed"] == 2


def test_unique_sizes_are_never_hashed(media_dir, token):
    _write(media_dir / "one.bin", b"1")
    _write(media_dir / "two.bin", b"22")
    _write(media_dir / "pair1.bin", b"xyz")
    _write(media_dir / "pair2.bin", b"xyz")
    counting = CountingHash()

    DuplicateDetector(DedupConfig(), token, hash_func=counting).run(media_dir)

    assert sorted(counting.paths) == ["pair1.bin", "pair2.bin"]


def test_duplicates_found_across_subdirectories(media_dir, token, event_bus):
    _write(media_dir / "a" / "clip.mp4", b"payload")
    _write(media_dir / "b" / "clip.mp4", b"payload")
    found = []
    event_bus.subscribe(DuplicateFound, found.append)

    DuplicateDetector(DedupConfig(), token, event_bus=event_bus).run(media_dir)

    assert (media_dir / "a" / "clip.mp4").exists()
    assert (media_dir / QUARANTINE / "clip.mp4").exists()
    assert len(found) == 1
    assert found[0].original == (media_dir / "a" / "clip.mp4").resolve()


def test_quarantine_name_collision_gets_suffix(media_dir, token):
    _write(media_dir / QUARANTINE / "b.bin", b"from an earlier run")
    _write(media_dir / "a.bin", b"dup")
    _write(media_dir / "b.bin", b"dup")

    DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert (media_dir / QUARANTINE / "b.bin").read_bytes() == b"from an earlier run"
    assert (media_dir / QUARANTINE / "b_1.bin").read_bytes() == b"dup"


def test_index_is_persisted_with_relative_paths(media_dir, token, tmp_path):
    _write(media_dir / "sub" / "a.bin", b"dup")
    _write(media_dir / "b.bin", b"dup")

    DuplicateDetector(DedupConfig(), token).run(media_dir)

    data = json.loads((media_dir / INDEX_NAME).read_text())
    assert data["version"] == 1
    # b.bin sorts before sub/ at the top level
    assert data["entries"] == {_digest_of(b"dup", tmp_path): "b.bin"}
    assert not (media_dir / f"{INDEX_NAME}.tmp").exists()


def test_rerun_keeps_earlier_canonical(media_dir, token, tmp_path):
    _write(media_dir / "z_first.bin", b"content")
    _write(media_dir / "z_twin.bin", b"content")
    DuplicateDetector(DedupConfig(), token).run(media_dir)

    # A copy sorting before the canonical one appears later
    _write(media_dir / "a_copy.bin", b"content")
    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert (media_dir / "z_first.bin").exists()
    assert not (media_dir / "a_copy.bin").exists()
    assert (media_dir / QUARANTINE / "a_copy.bin").exists()
    assert summary.details["duplicates"] == 1
    assert summary.details["known"] == 1


def test_file_matching_unscanned_original_is_hashed(media_dir, token, tmp_path):
    outside = _write(tmp_path / "archive" / "orig.bin", b"abc")
    digest = _digest_of(b"abc", tmp_path)
    (media_dir / INDEX_NAME).write_text(json.dumps({"version": 1, "entries": {digest: str(outside)}}))
    # Only file of its size in the scan, but the index knows an original of that size
    _write(media_dir / "late.bin", b"abc")
    _write(media_dir / "solo.bin", b"abcd")
    counting = CountingHash()

    summary = DuplicateDetector(DedupConfig(), token, hash_func=counting).run(media_dir)

    # The outside original is re-read once to confirm it still holds the digest
    assert counting.paths == ["late.bin", "orig.bin"]
    assert (media_dir / QUARANTINE / "late.bin").exists()
    assert outside.exists()
    assert summary.details["duplicates"] == 1


def test_index_repaired_when_canonical_missing(media_dir, token, tmp_path):
    _write(media_dir / "a.bin", b"same")
    _write(media_dir / "b.bin", b"same")
    DuplicateDetector(DedupConfig(), token).run(media_dir)

    (media_dir / "a.bin").unlink()
    _write(media_dir / "c.bin", b"same")
    _write(media_dir / "d.bin", b"same")
    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert summary.details["repaired"] == 1
    assert (media_dir / "c.bin").exists()
    assert (media_dir / QUARANTINE / "d.bin").exists()
    index = _load_index(media_dir.resolve())
    assert index.lookup(_digest_of(b"same", tmp_path)) == media_dir.resolve() / "c.bin"


def test_changed_file_drops_stale_entry(media_dir, token, tmp_path):
    _write(media_dir / "a.bin", b"old!")
    _write(media_dir / "b.bin", b"old!")
    DuplicateDetector(DedupConfig(), token).run(media_dir)

    _write(media_dir / "a.bin", b"new!")
    _write(media_dir / "c.bin", b"new!")
    DuplicateDetector(DedupConfig(), token).run(media_dir)

    entries = _load_index(media_dir.resolve()).snapshot()
    assert _digest_of(b"old!", tmp_path) not in entries
    assert entries[_digest_of(b"new!", tmp_path)] == "a.bin"
    assert (media_dir / QUARANTINE / "c.bin").exists()


def test_resized_canonical_does_not_quarantine_every_copy(media_dir, token, tmp_path):
    _write(media_dir / "a.bin", b"AAAA")
    _write(media_dir / "b.bin", b"AAAA")
    DuplicateDetector(DedupConfig(), token).run(media_dir)
    assert (media_dir / QUARANTINE / "b.bin").exists()

    # The canonical file is edited to a unique size, then new copies of the old content arrive
    _write(media_dir / "a.bin", b"BBBBBB")
    _write(media_dir / "x.bin", b"AAAA")
    _write(media_dir / "y.bin", b"AAAA")
    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    in_place = [p.name for p in media_dir.glob("*.bin") if p.read_bytes() == b"AAAA"]
    assert in_place == ["x.bin"]
    assert (media_dir / QUARANTINE / "y.bin").exists()
    assert summary.details["repaired"] == 1
    assert summary.details["duplicates"] == 1
    index = _load_index(media_dir.resolve())
    assert index.lookup(_digest_of(b"AAAA", tmp_path)) == media_dir.resolve() / "x.bin"


def test_rewritten_outside_canonical_is_replaced(media_dir, token, tmp_path):
    outside = _write(tmp_path / "archive" / "orig.bin", b"abc")
    digest = _digest_of(b"abc", tmp_path)
    (media_dir / INDEX_NAME).write_text(json.dumps({"version": 1, "entries": {digest: str(outside)}}))
    # Same size, different content: only a re-hash can tell
    outside.write_bytes(b"xyz")
    _write(media_dir / "late.bin", b"abc")

    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert (media_dir / "late.bin").exists()
    assert not (media_dir / QUARANTINE).exists()
    assert summary.details["repaired"] == 1
    assert _load_index(media_dir.resolve()).lookup(digest) == media_dir.resolve() / "late.bin"


def test_corrupt_index_starts_empty(media_dir, token):
    _write(media_dir / INDEX_NAME, b"{not json")
    _write(media_dir / "a.bin", b"dup")
    _write(media_dir / "b.bin", b"dup")

    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert summary.details["duplicates"] == 1
    data = json.loads((media_dir / INDEX_NAME).read_text())
    assert list(data["entries"].values()) == ["a.bin"]


def test_index_file_not_scanned(media_dir, token):
    _write(media_dir / "a.bin", b"x")
    DuplicateDetector(DedupConfig(), token).run(media_dir)

    summary = DuplicateDetector(DedupConfig(), token).run(media_dir)

    assert summary.total == 1


def test_hash_failure_is_per_file(media_dir, token, event_bus):
    _write(media_dir / "a.bin", b"dup")
    _write(media_dir / "b.bin", b"dup")
    _write(media_dir / "c.bin", b"dup")
    failures = []
    event_bus.subscribe(ItemFailed, failures.append)

    def flaky(path):
        if path.name == "a.bin":
            raise PermissionError(13, "Permission denied", str(path))
        return hash_file(path)

    summary = DuplicateDetector(DedupConfig(), token, event_bus=event_bus, hash_func=flaky).run(media_dir)

    assert summary.failed == 1
    assert len(failures) == 1 and failures[0].path.name == "a.bin"
    # a.bin never hashed, so b.bin becomes canonical
    assert (media_dir / "a.bin").exists()
    assert (media_dir / "b.bin").exists()
    assert (media_dir / QUARANTINE / "c.bin").exists()


def test_cancelled_before_start_moves_nothing(media_dir, token, event_bus):
    _write(media_dir / "a.bin", b"dup")
    _write(media_dir / "b.bin", b"dup")
    finished = []
    event_bus.subscribe(WorkflowFinished, finished.append)
    token.set()

    summary = DuplicateDetector(DedupConfig(), token, event_bus=event_bus).run(media_dir)

    assert summary.cancelled
    assert (media_dir / "b.bin").exists()
    assert not (media_dir / QUARANTINE).exists()
    # Index is still written on the way out
    assert (media_dir / INDEX_NAME).exists()
    assert len(finished) == 1


def test_custom_quarantine_dir(media_dir, token):
    _write(media_dir / "a.bin", b"dup")
    _write(media_dir / "b.bin", b"dup")

    DuplicateDetector(DedupConfig(quarantine_dir="dupes"), token).run(media_dir)

    assert (media_dir / "dupes" / "b.bin").exists()
