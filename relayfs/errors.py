"""
Exceptions raised by the driver for conditions that are not plain I/O failures.

Filesystem and network failures are deliberately not wrapped: a missing file surfaces
as the builtin FileNotFoundError and a failed connection as the httpx error that
caused it. The types in this module cover the checks the driver performs itself before
any I/O is attempted, plus cancellation of transfers.

All of them are registered with the RPC encoding so that a client receives the same
exception type that was raised on the server.
"""

from typing import List


class DriverError(Exception):
    """Base class of all driver specific errors."""


class PermissionDenied(DriverError):
    """A mutating operation was attempted on a driver with read-only permissions."""


class InvalidArgument(DriverError):
    """An argument has the wrong resource type or an unusable value."""


class FileNotOpen(DriverError):
    """A read or write was attempted on a file without a live handle."""


class NoData(DriverError):
    """A write was attempted without any data."""


class TransferAborted(DriverError):
    """An HTTP transfer was cancelled by its progress callback."""


class UnknownCommand(DriverError):
    """A command envelope named a command that the driver does not implement."""


def error_types() -> List[type]:
    """Return all driver error types, for registration with the RPC encoding."""
    return [
        DriverError,
        PermissionDenied,
        InvalidArgument,
        FileNotOpen,
        NoData,
        TransferAborted,
        UnknownCommand,
    ]
