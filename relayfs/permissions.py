"""Module with the access level of a driver and the check guarding mutations."""

from enum import Enum

from relayfs.errors import PermissionDenied


class Permission(Enum):
    """Access level of a driver instance, named as in the configuration."""

    READ = "read"
    WRITE = "write"
    READ_WRITE = "readWrite"

    @staticmethod
    def parse(value: str) -> "Permission":
        """Look up a permission level by its configuration name (case-insensitive)."""
        for permission in Permission:
            if permission.value.lower() == value.strip().lower():
                return permission

        raise ValueError(f"unknown permission level '{value}'")


class PermissionGate:
    """Fixed access level that mutating operations consult before doing any I/O."""

    def __init__(self, level: Permission):
        self._level = level

    @property
    def level(self) -> Permission:
        return self._level

    @property
    def read_only(self) -> bool:
        return self._level == Permission.READ

    def check_mutation(self) -> None:
        """Raise PermissionDenied if the access level does not allow mutations."""
        if self.read_only:
            raise PermissionDenied("Permission denied")
