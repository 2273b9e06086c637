import os
from datetime import timezone

import pytest

from relayfs.filesystem.service import (
    LocalFileSystem,
    MODE_APPEND,
    MODE_CREATE,
    MODE_READ,
)


@pytest.fixture
def fs():
    return LocalFileSystem()


def test_open_modes(fs, tmp_path):
    with pytest.raises(FileNotFoundError):
        fs.open(str(tmp_path / "read.txt"), MODE_READ)

    fh = fs.open(str(tmp_path / "write.txt"), MODE_CREATE)
    fs.close(fh)

    assert (tmp_path / "write.txt").exists()


def test_file_reads(fs, tmp_path):
    (tmp_path / "read.txt").write_bytes(b"abcdef")

    fh = fs.open(str(tmp_path / "read.txt"), MODE_READ)

    try:
        assert fs.read(fh, 2, 0) == b"ab"
        assert fs.read(fh, 2, None) == b"cd"
        assert fs.read(fh, 2, 1) == b"bc"
        assert fs.read(fh, None, 0) == b"abcdef"
    finally:
        fs.close(fh)


def test_file_writes(fs, tmp_path):
    fh = fs.open(str(tmp_path / "write.txt"), MODE_CREATE)

    fs.write(fh, b"bc", 1)
    fs.write(fh, b"a", 0)

    fs.close(fh)

    assert (tmp_path / "write.txt").read_bytes() == b"abc"


def test_file_appends(fs, tmp_path):
    (tmp_path / "append.txt").write_bytes(b"ab")

    fh = fs.open(str(tmp_path / "append.txt"), MODE_APPEND)
    fs.write(fh, b"c", None)
    fs.close(fh)

    assert (tmp_path / "append.txt").read_bytes() == b"abc"


def test_existence(fs, tmp_path):
    (tmp_path / "file").write_text("")
    (tmp_path / "dir").mkdir()

    assert fs.is_file(str(tmp_path / "file"))
    assert not fs.is_file(str(tmp_path / "dir"))
    assert not fs.is_file(str(tmp_path / "nonexistent"))

    assert fs.is_dir(str(tmp_path / "dir"))
    assert not fs.is_dir(str(tmp_path / "file"))
    assert not fs.is_dir(str(tmp_path / "nonexistent"))


def test_metadata(fs, tmp_path):
    (tmp_path / "file").write_bytes(b"abc")

    assert fs.size(str(tmp_path / "file")) == 3

    mtime = fs.mtime(str(tmp_path / "file"))
    assert mtime.tzinfo == timezone.utc
    assert mtime.timestamp() == pytest.approx(os.stat(tmp_path / "file").st_mtime)


def test_listdir_sorted(fs, tmp_path):
    for name in ["c", "a", "b"]:
        (tmp_path / name).write_text("")

    assert fs.listdir(str(tmp_path)) == ["a", "b", "c"]


def test_discard(fs, tmp_path):
    (tmp_path / "file").write_text("")

    fs.discard(str(tmp_path / "file"))
    fs.discard(str(tmp_path / "file"))

    assert not (tmp_path / "file").exists()


def test_copytree_merges(fs, tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "new").write_text("new")

    (tmp_path / "dst").mkdir()
    (tmp_path / "dst" / "old").write_text("old")

    fs.copytree(str(tmp_path / "src"), str(tmp_path / "dst"))

    assert sorted(os.listdir(tmp_path / "dst")) == ["new", "old"]


def test_structure(fs, tmp_path):
    fs.makedirs(str(tmp_path / "a" / "b"))
    fs.makedirs(str(tmp_path / "a" / "b"))

    fs.rename(str(tmp_path / "a"), str(tmp_path / "c"))
    assert (tmp_path / "c" / "b").is_dir()

    fs.rmtree(str(tmp_path / "c"))
    assert not (tmp_path / "c").exists()
