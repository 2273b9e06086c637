"""
Module implementing the command-line interface and invoking the main logic of relayfs.

relayfs exposes a local directory tree to remote callers. It loads its configuration,
creates a driver for the base path with the configured permission level, and then
serves command envelopes on a ZeroMQ endpoint until it is interrupted.
"""

import asyncio
import os
import signal
import sys
from typing import List, NoReturn, Optional

import relayfs.constants as constants
from relayfs.config import Config
from relayfs.dispatch import Dispatcher
from relayfs.filesystem.common import Url
from relayfs.filesystem.driver import FileSystemDriver
from relayfs.logger import log, set_debug
from relayfs.rpc import Server
from .args import Arguments


def load_config(args: Arguments) -> Config:
    """Load the config file and apply the overrides from the command-line."""
    config = Config.load(os.path.expanduser(args.config))

    if args.path is not None:
        config.driver.path = os.path.expanduser(args.path)
    if args.permissions is not None:
        config.driver.permissions = args.permissions
    if args.workers is not None:
        config.driver.workers = args.workers
    if args.endpoint is not None:
        config.server.endpoint = args.endpoint

    return config


def log_progress(
    url: Url, direction: str, transferred: int, total: Optional[int]
) -> bool:
    """Log the progress of a transfer requested by a caller, never aborting it."""
    log.debug(f"{direction.lower()} {url.url}: {transferred}/{total} bytes")

    return True


async def serve(config: Config) -> None:
    """Serve commands for the configured driver until cancelled."""
    driver = FileSystemDriver(
        config.driver.path,
        permissions=config.driver.permissions,
        workers=config.driver.workers,
        progress_interval=config.driver.progress_interval,
        progress=log_progress,
    )

    server = Server(Dispatcher(driver).dispatch, token=config.server.token)

    try:
        await server.serve(config.server.endpoint)
    finally:
        await driver.aclose()


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run the relayfs service with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    set_debug(args.debug)

    config = load_config(args)

    if not os.path.isdir(config.driver.path):
        log.error(f"base path {config.driver.path} is not a directory")
        sys.exit(constants.RELAYFS_ERROR_CODE)

    try:
        asyncio.run(serve(config))
        exit_code = 0
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to serve commands: {e}")
        exit_code = constants.RELAYFS_ERROR_CODE

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
