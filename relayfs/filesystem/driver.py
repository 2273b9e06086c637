"""
Module with the driver that executes file, directory, archive and HTTP commands.

The driver operates on resources below a single base path. Callers never see native
file handles: an open file is identified by the id of its File object, which the
driver keeps in its HandleRegistry until the file is closed.

All blocking work (file I/O, stat calls, archive streaming) runs on a small thread
pool owned by the driver, so every I/O call is a suspension point for the event loop
while the driver's own state is only ever touched from the event loop thread.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import errno
import functools
import itertools
import json
import os
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import httpx

from relayfs.constants import PROGRESS_INTERVAL
from relayfs.errors import FileNotOpen, InvalidArgument, NoData, PermissionDenied
from relayfs.filesystem.archive import ZipCodec
from relayfs.filesystem.common import (
    DIRECTORY_TAG,
    Directory,
    File,
    FILE_TAG,
    is_descriptor,
    join_path,
    parent_path,
    Resource,
    serialize_resource,
    Url,
    URL_TAG,
)
from relayfs.filesystem.registry import HandleRegistry
from relayfs.filesystem.service import (
    LocalFileSystem,
    MODE_APPEND,
    MODE_CREATE,
    MODE_READ,
)
from relayfs.logger import log
from relayfs.permissions import Permission, PermissionGate
from relayfs.transfer import DOWNLOAD, HttpOptions, HttpResponse, TransferEngine, UPLOAD

T = TypeVar("T")

# Called with the Url, the DOWNLOAD or UPLOAD direction, and the transferred and total
# byte counts. The server a resolved Url came from is found in Url.server.
ProgressHook = Callable[[Url, str, int, Optional[int]], Any]


class FileSystemDriver:
    """Driver that exposes a local directory tree and outbound HTTP to callers."""

    def __init__(
        self,
        path: str,
        permissions: Permission = Permission.READ_WRITE,
        workers: int = 4,
        progress_interval: float = PROGRESS_INTERVAL,
        filesystem: Optional[LocalFileSystem] = None,
        archive: Optional[ZipCodec] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        progress: Optional[ProgressHook] = None,
    ):
        """
        Instantiate a driver for the directory tree at the given base path.

        The file system, archive codec and HTTP transport default to the real ones and
        can be substituted, for example by tests.

        The progress hook receives the transfer progress of every Url the driver
        creates, including those resolved from command arguments. A falsy result,
        or awaited result, aborts the transfer.
        """
        self.path = path
        self._root = os.path.abspath(path)
        self._progress = progress

        self._gate = PermissionGate(permissions)
        self._files = HandleRegistry()

        # Ids assigned by the driver are negative, ids chosen by callers are not
        self._ids = itertools.count(-1, -1)

        self._fs = filesystem or LocalFileSystem()
        self._archive = archive or ZipCodec()

        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="relayfs-io"
        )

        self._transfer = TransferEngine(
            self._run, self._fs, transport, progress_interval=progress_interval
        )

    @property
    def permissions(self) -> Permission:
        return self._gate.level

    @property
    def open_files(self) -> HandleRegistry:
        return self._files

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking call on the worker threads."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def aclose(self) -> None:
        """Close all files that are still open and stop the worker threads."""
        for file in self._files.drain():
            handle, file.handle = file.handle, None

            if handle is not None:
                try:
                    await self._run(self._fs.close, handle)
                except OSError as e:
                    log.warning(f"failed to close {file.path}: {e}")

        self._executor.shutdown(wait=True)

    #
    # Resources
    #

    def file(self, path: str, id: Optional[int] = None) -> File:
        """Create a File below the base path, assigning a fresh id if none is given."""
        if id is None:
            id = next(self._ids)

        return File(path, id=id, root=self.path)

    def directory(self, path: str) -> Directory:
        return Directory(path, root=self.path)

    def url(self, url: str) -> Url:
        """Create a Url whose transfer progress is reported to the progress hook."""
        obj = Url(url)

        if self._progress is not None:
            hook = self._progress
            obj.on_download_progress = functools.partial(hook, obj, DOWNLOAD)
            obj.on_upload_progress = functools.partial(hook, obj, UPLOAD)

        return obj

    def deserialize_object(self, obj: Dict[str, Any]) -> Resource:
        """
        Turn a resource descriptor into a resource object.

        A descriptor carrying the id of an open file resolves to that exact File, so
        that its handle is found again. The descriptor must then name the same path
        as the open file. Any other descriptor yields a new object.
        """
        file_id = obj.get("id")
        tag = obj.get("_t")

        if file_id is not None and file_id in self._files:
            file: File = self._files.get(file_id)  # type: ignore
            path = obj.get("path", "")

            if tag != FILE_TAG or not self._same_path(file, path):
                raise InvalidArgument(
                    f"id {file_id} is open for {file.path}, not for {path}"
                )

            return file

        if tag == FILE_TAG:
            return self.file(obj.get("path", ""), file_id)
        elif tag == DIRECTORY_TAG:
            return self.directory(obj.get("path", ""))
        elif tag == URL_TAG:
            return self.url(obj.get("url", ""))
        else:
            raise InvalidArgument(f"unknown resource type '{tag}'")

    def _same_path(self, file: File, path: str) -> bool:
        other = os.path.abspath(File(path, root=self.path).absolute_path)

        return other == os.path.abspath(file.absolute_path)

    @staticmethod
    def serialize_object(obj: Resource) -> Dict[str, Any]:
        return serialize_resource(obj)

    def _absolute_path(self, obj: Union[File, Directory]) -> str:
        """Return the absolute path of a resource, which must be below the base path."""
        path = os.path.abspath(obj.absolute_path)

        if os.path.commonpath([self._root, path]) != self._root:
            raise PermissionDenied(f"path outside of base path: {obj.path}")

        return path

    @staticmethod
    def _expect(obj: Any, types: Union[type, tuple], name: str) -> None:
        """Raise InvalidArgument if a parameter is not a resource of the given type."""
        if not isinstance(obj, types):
            if isinstance(types, tuple):
                expected = " or ".join(t.__name__ for t in types)
            else:
                expected = types.__name__

            raise InvalidArgument(
                f"The provided parameter '{name}' must be an instance of {expected}"
            )

    #
    # File operations
    #

    async def create_file(self, file: File) -> None:
        """Open a file for writing, creating it or truncating its content."""
        self._expect(file, File, "file")
        self._gate.check_mutation()

        await self._open(file, MODE_CREATE)

    async def open_file(self, file: File) -> None:
        """Open a file for reading."""
        self._expect(file, File, "file")

        await self._open(file, MODE_READ)

    async def open_file_for_append(self, file: File) -> None:
        """Open a file for appending, creating it if needed."""
        self._expect(file, File, "file")
        self._gate.check_mutation()

        await self._open(file, MODE_APPEND)

    async def _open(self, file: File, mode: str) -> None:
        handle = await self._run(self._fs.open, self._absolute_path(file), mode)

        # Reopening a file replaces its previous handle
        previous, file.handle = file.handle, handle

        if file.id is None:
            file.id = next(self._ids)

        self._files.add(file)

        if previous is not None:
            await self._run(self._fs.close, previous)

    async def close(self, file: File) -> None:
        """
        Close a file and forget its handle.

        The registry entry is removed before the handle is released, so a failing
        release never leaves a stale entry, and a second close finds nothing to release.
        """
        self._expect(file, File, "file")

        self._files.remove(file)
        handle, file.handle = file.handle, None

        if handle is not None:
            await self._run(self._fs.close, handle)

    async def file_exists(self, file: File) -> bool:
        self._expect(file, File, "file")

        return await self._run(self._fs.is_file, self._absolute_path(file))

    async def read(
        self, file: File, length: Optional[int] = None, offset: Optional[int] = None
    ) -> bytes:
        """
        Read a block of bytes from an open file.

        Without a length the file is read up to its end. Without an offset reading
        starts at the current position of the handle.
        """
        self._expect(file, File, "file")

        if file.handle is None:
            raise FileNotOpen("File not opened")

        position = offset if isinstance(offset, int) else None

        return await self._run(self._fs.read, file.handle, length or None, position)

    async def read_all(self, file: File) -> str:
        """Read a whole file as text, whether or not it is open."""
        self._expect(file, File, "file")

        file.encoding = file.encoding or "utf-8"

        return await self._run(
            self._fs.read_text, self._absolute_path(file), file.encoding
        )

    async def write(
        self,
        file: File,
        data: Any,
        offset: Optional[int] = None,
        length: Optional[int] = None,
        position: Optional[int] = None,
    ) -> None:
        """
        Write text or bytes to an open file.

        For bytes, offset and length select the part of data that is written. A
        negative offset counts as zero, and a length reaching past the end of data
        writes only the bytes that are there, without an error. Values that are
        neither text nor bytes are written as JSON. Without a position data is written
        at the current position of the handle.
        """
        self._expect(file, File, "file")
        self._gate.check_mutation()

        if file.handle is None:
            raise FileNotOpen("File not open for write")

        if data is None or (isinstance(data, (str, bytes, bytearray)) and not data):
            raise NoData("No data to write")

        if not isinstance(data, (str, bytes, bytearray, memoryview)):
            try:
                data = json.dumps(data)
            except (TypeError, ValueError) as e:
                raise InvalidArgument(f"Cannot serialize data: {e}")

        if isinstance(data, str):
            payload = data.encode(file.encoding or "utf-8")
        else:
            start = offset if offset is not None and offset > 0 else 0
            end = start + length if length else None
            payload = bytes(data)[start:end]

        await self._run(self._fs.write, file.handle, payload, position)

    async def copy_file(self, file: File, new_file: File) -> None:
        self._expect(file, File, "file")
        self._expect(new_file, File, "newFile")
        self._gate.check_mutation()

        if not await self.file_exists(file):
            raise FileNotFoundError(
                errno.ENOENT, "file to copy doesn't exist", file.path
            )

        await self._run(
            self._fs.copy_file,
            self._absolute_path(file),
            self._absolute_path(new_file),
        )

    async def rename_object(
        self, obj: Union[File, Directory], new_obj: Union[File, Directory, str]
    ) -> None:
        """
        Rename a file or directory.

        The new name may also be given as a bare name, which is then taken to be an
        entry of the same kind in the same parent directory.
        """
        self._expect(obj, (File, Directory), "obj")
        self._gate.check_mutation()

        if isinstance(new_obj, str):
            sibling = join_path(parent_path(obj.path), new_obj)

            if isinstance(obj, File):
                new_obj = self.file(sibling)
            else:
                new_obj = self.directory(sibling)
        else:
            self._expect(new_obj, (File, Directory), "newObj")

        await self._run(
            self._fs.rename, self._absolute_path(obj), self._absolute_path(new_obj)
        )

    async def file_length(self, file: File) -> int:
        self._expect(file, File, "file")

        return await self._run(self._fs.size, self._absolute_path(file))

    async def file_date_time(self, file: File) -> datetime:
        """Return the modification time of a file as a UTC datetime."""
        self._expect(file, File, "file")

        return await self._run(self._fs.mtime, self._absolute_path(file))

    async def delete_file(self, file: File) -> None:
        self._expect(file, File, "file")
        self._gate.check_mutation()

        if not await self.file_exists(file):
            raise FileNotFoundError(
                errno.ENOENT, "file to delete doesn't exist", file.path
            )

        await self._run(self._fs.remove, self._absolute_path(file))

    #
    # Directory operations
    #

    async def mk_dir(self, directory: Directory) -> None:
        """Create a directory along with any missing parents."""
        self._expect(directory, Directory, "directory")
        self._gate.check_mutation()

        await self._run(self._fs.makedirs, self._absolute_path(directory))

    async def dir_exists(self, directory: Directory) -> bool:
        self._expect(directory, Directory, "directory")

        return await self._run(self._fs.is_dir, self._absolute_path(directory))

    async def copy_dir(self, src_dir: Directory, dst_dir: Directory) -> None:
        """Copy a directory tree, merging it into the destination if that exists."""
        self._expect(src_dir, Directory, "srcDir")
        self._expect(dst_dir, Directory, "dstDir")
        self._gate.check_mutation()

        if not await self.dir_exists(src_dir):
            raise FileNotFoundError(
                errno.ENOENT, f"Directory {src_dir.path} doesn't exist", src_dir.path
            )

        await self._run(
            self._fs.copytree,
            self._absolute_path(src_dir),
            self._absolute_path(dst_dir),
        )

    async def remove_dir_recursive(self, directory: Directory) -> None:
        """Remove a directory and everything in it. A missing directory is ignored."""
        self._expect(directory, Directory, "directory")
        self._gate.check_mutation()

        if not await self.dir_exists(directory):
            return

        await self._run(self._fs.rmtree, self._absolute_path(directory))

    async def read_directory(
        self, directory: Directory, depth: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        List the entries of a directory as resource descriptors.

        Subdirectories are listed as well while depth is above zero, decreasing it by
        one per level. A depth of zero lists a single level. Without a depth, or with a
        negative one, the whole tree is listed.
        """
        self._expect(directory, Directory, "directory")

        path = self._absolute_path(directory)
        result: List[Dict[str, Any]] = []

        for entry in await self._run(self._fs.listdir, path):
            entry_path = join_path(directory.path, entry)

            if await self._run(self._fs.is_dir, os.path.join(path, entry)):
                subdirectory = self.directory(entry_path)
                result.append(self.serialize_object(subdirectory))

                if depth is None or depth != 0:
                    next_depth = None if depth is None else depth - 1
                    result += await self.read_directory(subdirectory, next_depth)
            else:
                result.append(self.serialize_object(self.file(entry_path)))

        return result

    #
    # Archives
    #

    async def zip_file(self, file: File, zip_file: File) -> None:
        """Write a new zip archive containing a single file."""
        self._expect(file, File, "file")
        self._expect(zip_file, File, "zipFile")
        self._gate.check_mutation()

        src = self._absolute_path(file)
        zip_path = self._absolute_path(zip_file)

        try:
            await self._run(self._archive.pack_file, src, file.name, zip_path)
        except Exception:
            await self._discard_archive(zip_path)
            raise

        log.info(f"zipped {file.path} into {zip_file.path}")

    async def zip_directory(self, directory: Directory, zip_file: File) -> None:
        """Write a new zip archive with the whole content of a directory."""
        self._expect(directory, Directory, "directory")
        self._expect(zip_file, File, "zipFile")
        self._gate.check_mutation()

        if not await self.dir_exists(directory):
            raise FileNotFoundError(
                errno.ENOENT, "Directory doesn't exist", directory.path
            )

        src = self._absolute_path(directory)
        zip_path = self._absolute_path(zip_file)

        try:
            count = await self._run(self._archive.pack_directory, src, zip_path)
        except Exception:
            await self._discard_archive(zip_path)
            raise

        log.info(f"zipped {count} entries of {directory.path} into {zip_file.path}")

    async def _discard_archive(self, zip_path: str) -> None:
        """Remove a partially written archive without masking the original error."""
        try:
            await self._run(self._fs.discard, zip_path)
        except OSError as e:
            log.warning(f"failed to remove partial archive {zip_path}: {e}")

    async def unzip(self, file: File, directory: Directory) -> None:
        """
        Extract a zip archive into a directory.

        Entries are extracted one after another: the parent directory of an entry is
        created first, then its content is streamed to disk, and only then does the
        next entry start. The call returns once every entry has been written and the
        archive has been closed. Any failure aborts the remaining extraction.
        """
        self._expect(file, File, "file")
        self._expect(directory, Directory, "directory")
        self._gate.check_mutation()

        zip_path = self._absolute_path(file)
        target_root = self._absolute_path(directory)

        archive = await self._run(self._archive.open_reader, zip_path)

        try:
            entries = self._archive.entries(archive)

            for entry in entries:
                target = os.path.abspath(os.path.join(target_root, entry.filename))

                if os.path.commonpath([target_root, target]) != target_root:
                    raise InvalidArgument(
                        f"archive entry outside of target directory: {entry.filename}"
                    )

                if entry.is_dir():
                    await self._run(self._fs.makedirs, target)
                    continue

                await self._run(self._fs.makedirs, os.path.dirname(target))
                await self._run(self._archive.extract_entry, archive, entry, target)
        finally:
            await self._run(self._archive.close_reader, archive)

        log.info(f"unzipped {len(entries)} entries of {file.path} to {directory.path}")

    #
    # HTTP
    #

    async def http_request(
        self, url: Url, method: str = "GET", options: Optional[Dict[str, Any]] = None
    ) -> HttpResponse:
        """
        Make an HTTP request.

        The DOWNLOAD and UPLOAD methods stream the response into, or the request body
        out of, the File given as the file option.
        """
        self._expect(url, Url, "url")

        config = HttpOptions.load(options)

        if is_descriptor(config.file):
            config.file = self.deserialize_object(config.file)

        if config.file is not None:
            self._expect(config.file, File, "options.file")

        file_path: Optional[str] = None
        file_size: Optional[int] = None

        if method in (DOWNLOAD, UPLOAD):
            if config.file is None:
                raise InvalidArgument(f"{method} requires the file option")

            file_path = self._absolute_path(config.file)

        if method == DOWNLOAD:
            self._gate.check_mutation()
        elif method == UPLOAD:
            file_size = await self._run(self._fs.size, file_path)
            config.file_name = config.file_name or config.file.name

        return await self._transfer.request(url, method, config, file_path, file_size)