import pytest

from relayfs.filesystem.common import (
    Directory,
    File,
    is_descriptor,
    join_path,
    parent_path,
    reference,
    root_path,
    serialize_resource,
    Url,
)


def test_join_path():
    assert join_path("/", "a.txt") == "/a.txt"
    assert join_path("", "a.txt") == "/a.txt"
    assert join_path("/sub/", "a.txt") == "/sub/a.txt"
    assert join_path("sub", "a.txt") == "sub/a.txt"


def test_parent_path():
    assert parent_path("/sub/a.txt") == "/sub"
    assert parent_path("sub/deeper/") == "sub"
    assert parent_path("a.txt") == ""


def test_root_path():
    assert root_path("/srv/data", "a.txt") == "/srv/data/a.txt"
    assert root_path("/srv/data/", "/a.txt") == "/srv/data/a.txt"
    assert root_path("/srv/data", "") == "/srv/data"
    assert root_path("", "/") == "/"


def test_file_properties():
    f = File("/sub/a.txt", id=3, root="/srv")

    assert f.absolute_path == "/srv/sub/a.txt"
    assert f.name == "a.txt"
    assert f.parent.path == "/sub"
    assert f.parent.root == "/srv"
    assert not f.is_open


def test_directory_properties():
    d = Directory("/sub/deeper/", root="/srv")

    assert d.absolute_path == "/srv/sub/deeper"
    assert d.name == "deeper"
    assert d.parent.path == "/sub"


def test_serialize_resource():
    assert serialize_resource(File("a.txt")) == {"path": "a.txt", "type": "file"}
    assert serialize_resource(Directory("sub")) == {"path": "sub", "type": "directory"}
    assert serialize_resource(Url("http://example.com")) == {"url": "http://example.com"}

    with pytest.raises(TypeError):
        serialize_resource("a.txt")


def test_reference():
    assert reference(File("a.txt", id=7)) == {"_t": "file", "path": "a.txt", "id": 7}
    assert reference(Directory("sub")) == {"_t": "directory", "path": "sub"}
    assert reference(Url("http://example.com")) == {
        "_t": "url",
        "url": "http://example.com",
    }

    with pytest.raises(TypeError):
        reference(None)


def test_is_descriptor():
    assert is_descriptor({"_t": "file", "path": "a.txt"})
    assert is_descriptor(reference(Url("http://example.com")))

    assert not is_descriptor({"path": "a.txt", "type": "file"})
    assert not is_descriptor({"_t": ""})
    assert not is_descriptor("a.txt")


def test_resources_compare_by_identity():
    assert File("a.txt") != File("a.txt")
