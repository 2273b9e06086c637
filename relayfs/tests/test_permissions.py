import pytest

from relayfs.errors import PermissionDenied
from relayfs.permissions import Permission, PermissionGate


def test_parse():
    assert Permission.parse("read") == Permission.READ
    assert Permission.parse("Write") == Permission.WRITE
    assert Permission.parse(" readwrite ") == Permission.READ_WRITE

    with pytest.raises(ValueError):
        Permission.parse("execute")


def test_read_only_gate():
    gate = PermissionGate(Permission.READ)

    assert gate.read_only

    with pytest.raises(PermissionDenied):
        gate.check_mutation()


@pytest.mark.parametrize("level", [Permission.WRITE, Permission.READ_WRITE])
def test_writable_gates(level):
    gate = PermissionGate(level)

    assert gate.level == level
    assert not gate.read_only

    gate.check_mutation()
