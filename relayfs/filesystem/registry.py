"""Module with the registry of files that currently hold an open handle."""

from typing import Dict, Iterator, List, Optional

from relayfs.filesystem.common import File


class HandleRegistry:
    """
    Mapping of file identifiers to the open File objects of one driver instance.

    Callers refer to open files by id across separate commands, so the registry is the
    only place where the File carrying the native handle can be found again. All
    mutations happen on the event loop thread, which makes locking unnecessary.
    """

    def __init__(self) -> None:
        self._files: Dict[int, File] = {}

    def add(self, file: File) -> None:
        """Register an opened file under its id, replacing any stale entry."""
        if file.id is None:
            raise ValueError(f"cannot register file without id: {file.path}")

        self._files[file.id] = file

    def get(self, file_id: Optional[int]) -> Optional[File]:
        """Return the open file with the given id, if any."""
        if file_id is None:
            return None

        return self._files.get(file_id)

    def remove(self, file: File) -> None:
        """Remove the entry of a file. Removing an unknown file is not an error."""
        if file.id is not None and self._files.get(file.id) is file:
            del self._files[file.id]

    def drain(self) -> List[File]:
        """Remove and return all registered files."""
        files = list(self._files.values())
        self._files.clear()
        return files

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[File]:
        return iter(list(self._files.values()))
