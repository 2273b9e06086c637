import os
import zipfile

import pytest

from relayfs.errors import InvalidArgument


def snapshot(root):
    """Return the relative paths of all files below root with their contents."""
    files = {}

    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            path = os.path.join(dirpath, filename)

            with open(path, "rb") as f:
                files[os.path.relpath(path, root)] = f.read()

    return files


@pytest.mark.asyncio
async def test_zip_directory_round_trip(driver, tmp_path):
    src = tmp_path / "src"
    (src / "nested" / "empty").mkdir(parents=True)
    (src / "a.txt").write_text("hello")
    (src / "nested" / "b.bin").write_bytes(os.urandom(200 * 1024))

    await driver.zip_directory(driver.directory("/src"), driver.file("/src.zip"))
    await driver.unzip(driver.file("/src.zip"), driver.directory("/out"))

    assert snapshot(tmp_path / "out") == snapshot(src)
    assert (tmp_path / "out" / "nested" / "empty").is_dir()


@pytest.mark.asyncio
async def test_zip_file(driver, tmp_path):
    (tmp_path / "a.txt").write_text("hello")

    await driver.zip_file(driver.file("/a.txt"), driver.file("/a.zip"))

    with zipfile.ZipFile(tmp_path / "a.zip") as archive:
        assert archive.namelist() == ["a.txt"]
        assert archive.read("a.txt") == b"hello"


@pytest.mark.asyncio
async def test_zip_missing_file_leaves_no_archive(driver, tmp_path):
    with pytest.raises(FileNotFoundError):
        await driver.zip_file(driver.file("/missing.txt"), driver.file("/a.zip"))

    assert not (tmp_path / "a.zip").exists()


@pytest.mark.asyncio
async def test_zip_missing_directory(driver, tmp_path):
    with pytest.raises(FileNotFoundError):
        await driver.zip_directory(driver.directory("/missing"), driver.file("/a.zip"))

    assert not (tmp_path / "a.zip").exists()


@pytest.mark.asyncio
async def test_zip_directory_failure_removes_partial_archive(driver, tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_text("hello")
    (src / "dangling").symlink_to(tmp_path / "nowhere")

    with pytest.raises(FileNotFoundError):
        await driver.zip_directory(driver.directory("/src"), driver.file("/out.zip"))

    assert not (tmp_path / "out.zip").exists()
    assert (src / "a.txt").read_text() == "hello"


@pytest.mark.asyncio
async def test_unzip_into_existing_directory(driver, tmp_path):
    with zipfile.ZipFile(tmp_path / "a.zip", "w") as archive:
        archive.writestr("x/y.txt", "y")

    (tmp_path / "out").mkdir()
    (tmp_path / "out" / "keep.txt").write_text("keep")

    await driver.unzip(driver.file("/a.zip"), driver.directory("/out"))

    assert (tmp_path / "out" / "x" / "y.txt").read_text() == "y"
    assert (tmp_path / "out" / "keep.txt").read_text() == "keep"


@pytest.mark.asyncio
async def test_unzip_rejects_escaping_entries(driver, tmp_path):
    with zipfile.ZipFile(tmp_path / "evil.zip", "w") as archive:
        archive.writestr("../escaped.txt", "evil")

    with pytest.raises(InvalidArgument):
        await driver.unzip(driver.file("/evil.zip"), driver.directory("/out"))

    assert not (tmp_path / "escaped.txt").exists()


@pytest.mark.asyncio
async def test_unzip_invalid_archive(driver, tmp_path):
    (tmp_path / "broken.zip").write_text("not a zip")

    with pytest.raises(zipfile.BadZipFile):
        await driver.unzip(driver.file("/broken.zip"), driver.directory("/out"))
