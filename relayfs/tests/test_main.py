import asyncio
import logging
import socket
from unittest import mock

import pytest

from relayfs.__main__ import load_config, log_progress, main, serve
from relayfs.args import Arguments
from relayfs.constants import RELAYFS_ERROR_CODE
from relayfs.filesystem.common import Url
from relayfs.logger import log
from relayfs.permissions import Permission


@pytest.fixture
def base_args(tmp_path):
    return [f"--config={tmp_path / 'nonexistent'}", f"--path={tmp_path}"]


def test_debug_flag_set(base_args):
    with mock.patch("relayfs.__main__.serve", new=mock.AsyncMock()):
        with pytest.raises(SystemExit) as e:
            main(base_args + ["--debug"])

        assert e.value.code == 0
        assert log.getEffectiveLevel() == logging.DEBUG


def test_debug_flag_not_set(base_args):
    with mock.patch("relayfs.__main__.serve", new=mock.AsyncMock()):
        with pytest.raises(SystemExit):
            main(base_args)

        assert log.getEffectiveLevel() == logging.ERROR


def test_serve_called_with_overrides(base_args, tmp_path):
    with mock.patch("relayfs.__main__.serve", new=mock.AsyncMock()) as mock_serve:
        with pytest.raises(SystemExit):
            main(base_args + ["--permissions=read", "--endpoint=tcp://127.0.0.1:1"])

    config = mock_serve.call_args[0][0]

    assert config.driver.path == str(tmp_path)
    assert config.driver.permissions == Permission.READ
    assert config.server.endpoint == "tcp://127.0.0.1:1"


def test_missing_base_path(tmp_path, caplog):
    with pytest.raises(SystemExit) as e:
        main([f"--config={tmp_path / 'nonexistent'}", f"--path={tmp_path / 'nope'}"])

    assert e.value.code == RELAYFS_ERROR_CODE
    assert "is not a directory" in caplog.text


def test_serve_failure(base_args, caplog):
    failing = mock.AsyncMock(side_effect=Exception("foo"))

    with mock.patch("relayfs.__main__.serve", new=failing):
        with pytest.raises(SystemExit) as e:
            main(base_args)

    assert e.value.code == RELAYFS_ERROR_CODE
    assert "failed to serve commands: foo" in caplog.text


def test_keyboard_interrupt(base_args):
    interrupted = mock.AsyncMock(side_effect=KeyboardInterrupt())

    with mock.patch("relayfs.__main__.serve", new=interrupted):
        with pytest.raises(SystemExit) as e:
            main(base_args)

    assert e.value.code == 130


def test_load_config_from_file(tmp_path):
    (tmp_path / "config").write_text("[driver]\nworkers = 3\n\n[server]\ntoken = t\n")

    config = load_config(Arguments.parse([f"--config={tmp_path / 'config'}"]))

    assert config.driver.workers == 3
    assert config.server.token == "t"

    config = load_config(
        Arguments.parse([f"--config={tmp_path / 'config'}", "--workers=5"])
    )

    assert config.driver.workers == 5


@pytest.mark.asyncio
async def test_serve_until_cancelled(tmp_path):
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]

    config = load_config(
        Arguments.parse(
            [
                f"--config={tmp_path / 'nonexistent'}",
                f"--path={tmp_path}",
                f"--endpoint=tcp://127.0.0.1:{port}",
            ]
        )
    )

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(serve(config), 0.2)


def test_log_progress(caplog):
    caplog.set_level(logging.DEBUG, logger=log.name)

    assert log_progress(Url("http://example.com/a"), "DOWNLOAD", 5, 10)
    assert "download http://example.com/a: 5/10 bytes" in caplog.text
