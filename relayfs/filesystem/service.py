"""
Module with the blocking local file system calls used by the driver.

The driver never calls into the os module directly. It runs these functions on its
worker threads, which keeps the event loop responsive and allows tests to substitute
the whole collaborator.
"""

from datetime import datetime, timezone
import errno
import os
import shutil
import stat
from typing import IO, List, Optional

# Python file modes for the three ways of opening a file.
MODE_CREATE = "w+b"
MODE_READ = "rb"
MODE_APPEND = "ab"


class LocalFileSystem:
    """Blocking file system operations on absolute paths."""

    #
    # File operations
    #

    @staticmethod
    def open(path: str, mode: str) -> IO[bytes]:
        return open(path, mode)

    @staticmethod
    def read(handle: IO[bytes], length: Optional[int], offset: Optional[int]) -> bytes:
        if offset is not None:
            handle.seek(offset)

        if length is None:
            return handle.read()
        else:
            return handle.read(length)

    @staticmethod
    def write(handle: IO[bytes], data: bytes, position: Optional[int]) -> int:
        if position is not None:
            handle.seek(position)

        written = handle.write(data)
        handle.flush()

        return written

    @staticmethod
    def close(handle: IO[bytes]) -> None:
        handle.close()

    @staticmethod
    def read_text(path: str, encoding: str) -> str:
        with open(path, "r", encoding=encoding) as f:
            return f.read()

    @staticmethod
    def copy_file(src: str, dst: str) -> None:
        shutil.copyfile(src, dst)

    @staticmethod
    def remove(path: str) -> None:
        os.remove(path)

    @staticmethod
    def discard(path: str) -> None:
        """Remove a file if it exists, ignoring the case where it does not."""
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    #
    # Metadata access
    #

    @staticmethod
    def is_file(path: str) -> bool:
        """
        Check if a regular file exists at the path.

        Only a "not found" error means absence; any other failure to stat the path
        (like a permission error) is reported as existence rather than masked.
        """
        try:
            st = os.stat(path)
        except OSError as e:
            return e.errno != errno.ENOENT

        return stat.S_ISREG(st.st_mode)

    @staticmethod
    def is_dir(path: str) -> bool:
        """Check if a directory exists at the path, with the same rules as is_file()."""
        try:
            st = os.stat(path)
        except OSError as e:
            return e.errno != errno.ENOENT

        return stat.S_ISDIR(st.st_mode)

    @staticmethod
    def size(path: str) -> int:
        return os.stat(path).st_size

    @staticmethod
    def mtime(path: str) -> datetime:
        return datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)

    @staticmethod
    def listdir(path: str) -> List[str]:
        return sorted(os.listdir(path))

    #
    # File system structure
    #

    @staticmethod
    def rename(old: str, new: str) -> None:
        os.rename(old, new)

    @staticmethod
    def makedirs(path: str) -> None:
        os.makedirs(path, exist_ok=True)

    @staticmethod
    def copytree(src: str, dst: str) -> None:
        shutil.copytree(src, dst, dirs_exist_ok=True)

    @staticmethod
    def rmtree(path: str) -> None:
        shutil.rmtree(path)
