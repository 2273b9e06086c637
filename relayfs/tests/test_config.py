import os.path

from configparser import ConfigParser

from relayfs.config import Config, DriverConfig, ServerConfig
from relayfs.constants import DEFAULT_ENDPOINT
from relayfs.permissions import Permission


def test_driver_config_defaults():
    parser = ConfigParser()
    parser.read_string("[driver]")

    cfg = DriverConfig.load(parser["driver"])

    assert cfg.path is not None
    assert cfg.permissions == Permission.READ_WRITE
    assert cfg.workers > 0
    assert cfg.progress_interval > 0


def test_driver_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [driver]
        path = ~/test
        permissions = read
        workers = 8
        progress_interval = 0.5
        """
    )

    cfg = DriverConfig.load(parser["driver"])

    assert cfg.path == os.path.expanduser("~/test")
    assert cfg.permissions == Permission.READ
    assert cfg.workers == 8
    assert cfg.progress_interval == 0.5


def test_server_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [server]
        endpoint = tcp://0.0.0.0:1234
        token =
        """
    )

    cfg = ServerConfig.load(parser["server"])

    assert cfg.endpoint == "tcp://0.0.0.0:1234"
    assert cfg.token is None


def test_config_defaults(tmp_path):
    cfg = Config.load(str(tmp_path / "nonexistent"))

    assert cfg.driver == DriverConfig()
    assert cfg.server.endpoint == DEFAULT_ENDPOINT
    assert cfg.server.token is None


def test_config_load(tmp_path):
    (tmp_path / "config").write_text(
        """
        [driver]
        path = /srv/data
        permissions = readWrite

        [server]
        token = secret
        """
    )

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.driver.path == "/srv/data"
    assert cfg.driver.permissions == Permission.READ_WRITE
    assert cfg.server.token == "secret"
    assert cfg.server.endpoint == DEFAULT_ENDPOINT


def test_config_load_failure_nonfatal(tmp_path):
    (tmp_path / "config").write_text("blabla")

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.driver is not None
    assert cfg.server is not None


def test_config_invalid_permissions_nonfatal(tmp_path, caplog):
    (tmp_path / "config").write_text("[driver]\npermissions = everything\n")

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.driver.permissions == Permission.READ_WRITE
    assert "unknown permission level" in caplog.text
