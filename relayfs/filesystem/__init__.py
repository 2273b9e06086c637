"""
Modules that implement the file system side of the driver.

Remote callers cannot hold native file handles, so every command refers to its
resources through small descriptors: a path for files and directories, a URL for HTTP
targets, and an id for files that were opened by an earlier command. The driver turns
those descriptors back into File, Directory and Url objects and keeps the open files in
a registry keyed by id until they are closed.

The submodules are layered:

* common: the resource value objects and their descriptors
* registry: the open files of a driver
* service: blocking local file system calls
* archive: streaming zip creation and extraction
* driver: the operations themselves, running the blocking calls on worker threads
"""

from .common import Directory, File, Resource, Url
from .registry import HandleRegistry

__all__ = [
    "Directory",
    "File",
    "HandleRegistry",
    "Resource",
    "Url",
]
