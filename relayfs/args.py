"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from relayfs.constants import PROTOCOL_VERSION, VERSION
from relayfs.permissions import Permission


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    config: str

    path: Optional[str]
    permissions: Optional[Permission]
    endpoint: Optional[str]
    workers: Optional[int]

    debug: bool

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Serve file, archive and HTTP commands for a local directory.",
            usage="relayfs [option...]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION} (protocol {PROTOCOL_VERSION})",
            help="show the program version and protocol version",
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.relayfs/config)",
            default="~/.relayfs/config",
        )

        # Overrides of the config file, unset unless specified
        parser.add_argument(
            "--path", type=str, help="base path of the exposed directory tree"
        )
        parser.add_argument(
            "--permissions",
            type=cls._parse_permissions,
            help="access level: read, write or readWrite",
        )
        parser.add_argument(
            "--endpoint",
            type=str,
            help="ZeroMQ endpoint to serve on, like tcp://127.0.0.1:7745",
        )
        parser.add_argument(
            "--workers",
            type=cls._parse_workers,
            help="number of blocking I/O workers",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        return parser

    @staticmethod
    def _parse_permissions(arg: str) -> Permission:
        try:
            return Permission.parse(arg)
        except ValueError:
            raise argparse.ArgumentTypeError("expected read, write or readWrite")

    @staticmethod
    def _parse_workers(arg: str) -> int:
        try:
            val = int(arg)
        except ValueError:
            val = 0

        if val <= 0:
            raise argparse.ArgumentTypeError("expected number > 0")

        return val
