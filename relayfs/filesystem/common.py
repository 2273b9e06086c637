"""Resource value objects that commands operate on, and their wire descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, IO, Optional, Union

# Called with the cumulative number of transferred bytes and the total (if known).
# A falsy return value (or awaited value) cancels the transfer.
ProgressCallback = Callable[[int, Optional[int]], Any]

# Values of the "_t" tag in serialized resource references.
FILE_TAG = "file"
DIRECTORY_TAG = "directory"
URL_TAG = "url"


def join_path(parent: str, name: str) -> str:
    """Join a logical directory path and an entry name with a single separator."""
    return f"{parent.rstrip('/')}/{name}"


def parent_path(path: str) -> str:
    """Return the logical path of the directory containing the given path."""
    return path[: path.rstrip("/").rfind("/") + 1].rstrip("/")


def root_path(root: str, path: str) -> str:
    """Join a base path and a logical path, without a trailing separator."""
    absolute = f"{root.rstrip('/')}/{path.lstrip('/')}".rstrip("/")

    return absolute or "/"


@dataclass(eq=False)
class File:
    """
    File addressed by a logical path below the driver's base path.

    While the file is open, `handle` holds the native file object and the file is
    registered with the driver under its `id`.
    """

    path: str
    id: Optional[int] = None
    root: str = ""
    encoding: Optional[str] = None
    handle: Optional[IO[bytes]] = field(default=None, repr=False)
    server: Any = field(default=None, repr=False)

    @property
    def absolute_path(self) -> str:
        return root_path(self.root, self.path)

    @property
    def name(self) -> str:
        return self.path.rstrip("/").split("/")[-1]

    @property
    def parent(self) -> Directory:
        return Directory(parent_path(self.path), root=self.root, server=self.server)

    @property
    def is_open(self) -> bool:
        return self.handle is not None

    def descriptor(self) -> Dict[str, Any]:
        return {"path": self.path, "type": FILE_TAG}


@dataclass(eq=False)
class Directory:
    """Directory addressed by a logical path. Directories are never opened."""

    path: str
    root: str = ""
    server: Any = field(default=None, repr=False)

    @property
    def absolute_path(self) -> str:
        return root_path(self.root, self.path)

    @property
    def name(self) -> str:
        return self.path.rstrip("/").split("/")[-1]

    @property
    def parent(self) -> Directory:
        return Directory(parent_path(self.path), root=self.root, server=self.server)

    def descriptor(self) -> Dict[str, Any]:
        return {"path": self.path, "type": DIRECTORY_TAG}


@dataclass(eq=False)
class Url:
    """Target of a single HTTP request, with optional progress callbacks."""

    url: str
    on_download_progress: Optional[ProgressCallback] = field(default=None, repr=False)
    on_upload_progress: Optional[ProgressCallback] = field(default=None, repr=False)
    server: Any = field(default=None, repr=False)

    def descriptor(self) -> Dict[str, Any]:
        return {"url": self.url}


Resource = Union[File, Directory, Url]


def is_descriptor(obj: Any) -> bool:
    """Check if a command argument is a serialized resource reference."""
    return isinstance(obj, dict) and bool(obj.get("_t"))


def serialize_resource(obj: Resource) -> Dict[str, Any]:
    """Turn a resource into the descriptor that is sent back to callers."""
    if isinstance(obj, (File, Directory, Url)):
        return obj.descriptor()

    raise TypeError(f"not a resource: {obj!r}")


def reference(obj: Resource) -> Dict[str, Any]:
    """Turn a resource into the tagged descriptor that commands accept as argument."""
    if isinstance(obj, File):
        return {"_t": FILE_TAG, "path": obj.path, "id": obj.id}
    elif isinstance(obj, Directory):
        return {"_t": DIRECTORY_TAG, "path": obj.path}
    elif isinstance(obj, Url):
        return {"_t": URL_TAG, "url": obj.url}

    raise TypeError(f"not a resource: {obj!r}")
