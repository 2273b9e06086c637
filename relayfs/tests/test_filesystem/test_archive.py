import zipfile

import pytest

from relayfs.filesystem.archive import ZipCodec


def test_pack_file(tmp_path):
    (tmp_path / "a.txt").write_text("hello")

    ZipCodec().pack_file(str(tmp_path / "a.txt"), "a.txt", str(tmp_path / "a.zip"))

    with zipfile.ZipFile(tmp_path / "a.zip") as archive:
        assert archive.namelist() == ["a.txt"]
        assert archive.read("a.txt") == b"hello"


def test_pack_directory(tmp_path):
    src = tmp_path / "src"
    (src / "sub" / "empty").mkdir(parents=True)
    (src / "a.txt").write_text("a")
    (src / "sub" / "b.bin").write_bytes(b"\x00\x01")

    count = ZipCodec().pack_directory(str(src), str(tmp_path / "out.zip"))

    with zipfile.ZipFile(tmp_path / "out.zip") as archive:
        names = archive.namelist()

        assert count == len(names) == 4
        assert "sub/empty/" in names
        assert archive.read("sub/b.bin") == b"\x00\x01"


def test_pack_directory_skips_own_archive(tmp_path):
    (tmp_path / "a.txt").write_text("a")

    ZipCodec().pack_directory(str(tmp_path), str(tmp_path / "self.zip"))

    with zipfile.ZipFile(tmp_path / "self.zip") as archive:
        assert archive.namelist() == ["a.txt"]


def test_pack_missing_file_releases_archive(tmp_path):
    with pytest.raises(FileNotFoundError):
        ZipCodec().pack_file(
            str(tmp_path / "missing"), "missing", str(tmp_path / "a.zip")
        )

    # The archive was finalized despite the failure
    with zipfile.ZipFile(tmp_path / "a.zip") as archive:
        assert archive.namelist() == []


def test_extract_entries(tmp_path):
    with zipfile.ZipFile(tmp_path / "a.zip", "w") as archive:
        archive.writestr("a.txt", "hello")

    codec = ZipCodec()
    archive = codec.open_reader(str(tmp_path / "a.zip"))

    try:
        (entry,) = codec.entries(archive)
        codec.extract_entry(archive, entry, str(tmp_path / "out.txt"))
    finally:
        codec.close_reader(archive)

    assert (tmp_path / "out.txt").read_text() == "hello"
