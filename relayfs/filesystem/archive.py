"""
Module with the zip codec used by the archive commands.

Archives are streamed in both directions: content is copied in CHUNK_SIZE blocks
between files and archive entries, so neither an input file nor an entry is ever held
in memory as a whole. The codec is blocking; the driver runs it on its worker threads
and is responsible for ordering, permissions, and cleanup of partial archives.
"""

import contextlib
import os
import pathlib
import shutil
from typing import Iterator, List
import zipfile

from relayfs.constants import CHUNK_SIZE


class ZipCodec:
    """Blocking creation and extraction of zip archives."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self.compression = compression

    #
    # Writing
    #

    def pack_file(self, src: str, arcname: str, zip_path: str) -> None:
        """Write a new archive at zip_path containing a single file."""
        with self._writer(zip_path) as archive:
            self._add_file(archive, src, arcname)

    def pack_directory(self, src_dir: str, zip_path: str) -> int:
        """
        Write a new archive at zip_path with everything below src_dir.

        Directories get their own entries so that empty ones survive a round trip. If
        the archive itself is located inside src_dir then it is skipped. Returns the
        number of entries written.
        """
        count = 0
        zip_abspath = os.path.abspath(zip_path)

        with self._writer(zip_path) as archive:
            for path in sorted(pathlib.Path(src_dir).glob("**/*")):
                if os.path.abspath(path) == zip_abspath:
                    continue

                arcname = path.relative_to(src_dir).as_posix()

                if path.is_dir():
                    archive.writestr(zipfile.ZipInfo.from_file(path, arcname), b"")
                else:
                    self._add_file(archive, str(path), arcname)

                count += 1

        return count

    @contextlib.contextmanager
    def _writer(self, zip_path: str) -> Iterator[zipfile.ZipFile]:
        """
        Open an archive for writing and finalize it on every exit path.

        If writing fails, the archive is still closed to release the output file, but
        an error raised while finalizing never replaces the original one.
        """
        archive = zipfile.ZipFile(zip_path, "w", compression=self.compression)

        try:
            yield archive
        except BaseException:
            with contextlib.suppress(Exception):
                archive.close()
            raise

        archive.close()

    def _add_file(self, archive: zipfile.ZipFile, src: str, arcname: str) -> None:
        info = zipfile.ZipInfo.from_file(src, arcname)
        info.compress_type = self.compression

        with open(src, "rb") as source, archive.open(info, "w") as target:
            shutil.copyfileobj(source, target, CHUNK_SIZE)

    #
    # Reading
    #

    @staticmethod
    def open_reader(zip_path: str) -> zipfile.ZipFile:
        return zipfile.ZipFile(zip_path, "r")

    @staticmethod
    def entries(archive: zipfile.ZipFile) -> List[zipfile.ZipInfo]:
        return archive.infolist()

    @staticmethod
    def extract_entry(
        archive: zipfile.ZipFile, entry: zipfile.ZipInfo, target: str
    ) -> None:
        """Stream the content of a file entry to the target path."""
        with archive.open(entry) as source, open(target, "wb") as out:
            shutil.copyfileobj(source, out, CHUNK_SIZE)

    @staticmethod
    def close_reader(archive: zipfile.ZipFile) -> None:
        archive.close()
