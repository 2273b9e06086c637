"""
Module that turns command envelopes into driver calls.

An envelope names a command and carries its positional arguments. Arguments that are
resource descriptors are resolved into File, Directory and Url objects (reusing the
open File when the descriptor carries the id of an open file), binary payloads are
normalized to bytes, and everything else is passed through as is. The dispatcher has no
knowledge of individual commands beyond the table that maps them to driver methods.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List

from relayfs.errors import InvalidArgument, UnknownCommand
from relayfs.filesystem.common import is_descriptor
from relayfs.filesystem.driver import FileSystemDriver
from relayfs.logger import log, summarize


class Command(Enum):
    """Commands understood by the driver, by their wire names."""

    CREATE_FILE = "createFile"
    OPEN_FILE = "openFile"
    OPEN_FILE_FOR_APPEND = "openFileForAppend"
    CLOSE = "close"
    FILE_EXISTS = "fileExists"
    READ = "read"
    READ_ALL = "readAll"
    WRITE = "write"
    COPY_FILE = "copyFile"
    RENAME_OBJECT = "renameObject"
    FILE_LENGTH = "fileLength"
    FILE_DATE_TIME = "fileDateTime"
    DELETE_FILE = "deleteFile"
    ZIP_FILE = "zipFile"
    UNZIP = "unzip"
    MK_DIR = "mkDir"
    DIR_EXISTS = "dirExists"
    COPY_DIR = "copyDir"
    READ_DIRECTORY = "readDirectory"
    ZIP_DIRECTORY = "zipDirectory"
    REMOVE_DIR_RECURSIVE = "removeDirRecursive"
    HTTP_REQUEST = "httpRequest"


@dataclass
class Envelope:
    """A command with its arguments and the opaque identity of the calling server."""

    cmd: str
    args: List[Any] = field(default_factory=list)
    server: Any = None

    @staticmethod
    def load(message: Any) -> Envelope:
        """Validate and load an envelope received as a plain dict."""
        if not isinstance(message, dict) or not isinstance(message.get("cmd"), str):
            raise InvalidArgument(f"malformed command envelope: {summarize(message)}")

        args = message.get("args") or []

        if not isinstance(args, (list, tuple)):
            raise InvalidArgument("command arguments must be a list")

        return Envelope(message["cmd"], list(args), message.get("server"))


class Dispatcher:
    """Resolves the arguments of command envelopes and invokes the driver with them."""

    def __init__(self, driver: FileSystemDriver):
        self.driver = driver

        self._handlers: Dict[Command, Callable[..., Awaitable[Any]]] = {
            Command.CREATE_FILE: driver.create_file,
            Command.OPEN_FILE: driver.open_file,
            Command.OPEN_FILE_FOR_APPEND: driver.open_file_for_append,
            Command.CLOSE: driver.close,
            Command.FILE_EXISTS: driver.file_exists,
            Command.READ: driver.read,
            Command.READ_ALL: driver.read_all,
            Command.WRITE: driver.write,
            Command.COPY_FILE: driver.copy_file,
            Command.RENAME_OBJECT: driver.rename_object,
            Command.FILE_LENGTH: driver.file_length,
            Command.FILE_DATE_TIME: driver.file_date_time,
            Command.DELETE_FILE: driver.delete_file,
            Command.ZIP_FILE: driver.zip_file,
            Command.UNZIP: driver.unzip,
            Command.MK_DIR: driver.mk_dir,
            Command.DIR_EXISTS: driver.dir_exists,
            Command.COPY_DIR: driver.copy_dir,
            Command.READ_DIRECTORY: driver.read_directory,
            Command.ZIP_DIRECTORY: driver.zip_directory,
            Command.REMOVE_DIR_RECURSIVE: driver.remove_dir_recursive,
            Command.HTTP_REQUEST: driver.http_request,
        }

    def handler(self, cmd: str) -> Callable[..., Awaitable[Any]]:
        """Look up the driver method of a command by its wire name."""
        try:
            command = Command(cmd)
        except ValueError:
            raise UnknownCommand(f"unknown command '{cmd}'")

        return self._handlers[command]

    def resolve(self, arg: Any, server: Any = None) -> Any:
        """Turn a single envelope argument into what the driver method expects."""
        if is_descriptor(arg):
            obj = self.driver.deserialize_object(arg)
            obj.server = server
            return obj
        elif isinstance(arg, (bytearray, memoryview)):
            return bytes(arg)
        else:
            return arg

    async def dispatch(self, envelope: Any) -> Any:
        """
        Execute a command and return its result.

        The envelope may be an Envelope or its dict form. Failures of the command are
        raised unchanged.
        """
        if not isinstance(envelope, Envelope):
            envelope = Envelope.load(envelope)

        handler = self.handler(envelope.cmd)
        args = [self.resolve(arg, envelope.server) for arg in envelope.args]

        t_call = time.time()

        try:
            return await handler(*args)
        finally:
            # Explicit check before logging because summarizing arguments is slow
            if log.isEnabledFor(logging.DEBUG):
                t_millis = round((time.time() - t_call) * 1000)
                summary = tuple(summarize(arg) for arg in envelope.args)
                log.debug(f"cmd::{envelope.cmd}{summary} - {t_millis} ms")
