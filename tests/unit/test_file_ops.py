import errno
import pytest
from unittest.mock import patch
from medorg.domain.errors import DirectoryAccessError
from medorg.infrastructure.file_ops import (
    ensure_directory, move_file, move_into, remove_if_exists, unique_destination,
)


def test_ensure_directory_creates_parents(tmp_path):
    target = tmp_path / "a" / "b"
    assert ensure_directory(target) == target
    assert target.is_dir()


def test_ensure_directory_on_file_raises(tmp_path):
    blocker = tmp_path / "fail"
    blocker.write_text("not a dir")
    with pytest.raises(DirectoryAccessError):
        ensure_directory(blocker)


def test_unique_destination_numbers_collisions(tmp_path):
    assert unique_destination(tmp_path, "clip.mp4") == tmp_path / "clip.mp4"

    (tmp_path / "clip.mp4").write_text("x")
    assert unique_destination(tmp_path, "clip.mp4") == tmp_path / "clip_1.mp4"

    (tmp_path / "clip_1.mp4").write_text("x")
    assert unique_destination(tmp_path, "clip.mp4") == tmp_path / "clip_2.mp4"


def test_move_file_same_filesystem(tmp_path):
    src = tmp_path / "a.txt"
    src.write_text("payload")
    dst = tmp_path / "sub" / "a.txt"
    dst.parent.mkdir()

    assert move_file(src, dst) == dst
    assert not src.exists()
    assert dst.read_text() == "payload"


def test_move_file_never_overwrites(tmp_path):
    src = tmp_path / "a.txt"
    src.write_text("new")
    dst = tmp_path / "b.txt"
    dst.write_text("old")

    with pytest.raises(FileExistsError):
        move_file(src, dst)
    assert src.read_text() == "new"
    assert dst.read_text() == "old"


def test_move_file_cross_device_copies_then_deletes(tmp_path):
    src = tmp_path / "a.bin"
    src.write_bytes(b"\x00" * 1024)
    dst_dir = tmp_path / "other"
    dst_dir.mkdir()
    dst = dst_dir / "a.bin"

    with patch("medorg.infrastructure.file_ops.os.rename", side_effect=OSError(errno.EXDEV, "Invalid cross-device link")):
        move_file(src, dst)

    assert not src.exists()
    assert dst.read_bytes() == b"\x00" * 1024
    # No staging leftovers
    assert [p.name for p in dst_dir.iterdir()] == ["a.bin"]


def test_move_file_cross_device_failure_leaves_source(tmp_path):
    src = tmp_path / "a.bin"
    src.write_bytes(b"data")
    dst_dir = tmp_path / "other"
    dst_dir.mkdir()

    with patch("medorg.infrastructure.file_ops.os.rename", side_effect=OSError(errno.EXDEV, "xdev")), \
         patch("medorg.infrastructure.file_ops.shutil.copy2", side_effect=OSError(errno.ENOSPC, "No space left")):
        with pytest.raises(OSError):
            move_file(src, dst_dir / "a.bin")

    assert src.exists()
    assert list(dst_dir.iterdir()) == []


def test_move_file_other_errors_propagate(tmp_path):
    src = tmp_path / "a.bin"
    src.write_bytes(b"data")
    with patch("medorg.infrastructure.file_ops.os.rename", side_effect=PermissionError(errno.EACCES, "denied")):
        with pytest.raises(PermissionError):
            move_file(src, tmp_path / "b.bin")
    assert src.exists()


def test_move_into_uses_suffix_on_collision(tmp_path):
    folder = tmp_path / "fail"
    folder.mkdir()
    (folder / "clip.mp4").write_text("first")
    src = tmp_path / "clip.mp4"
    src.write_text("second")

    moved = move_into(src, folder)

    assert moved == folder / "clip_1.mp4"
    assert (folder / "clip.mp4").read_text() == "first"
    assert moved.read_text() == "second"


def test_remove_if_exists(tmp_path):
    f = tmp_path / "x"
    f.write_text("x")
    assert remove_if_exists(f) is True
    assert remove_if_exists(f) is False
