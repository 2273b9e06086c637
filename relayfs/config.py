"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os
from typing import Optional

from relayfs.constants import DEFAULT_ENDPOINT, PROGRESS_INTERVAL
from relayfs.logger import log
from relayfs.permissions import Permission


@dataclass
class DriverConfig:
    """Configuration variables of the file system driver."""

    path: str = os.path.expanduser("~/relayfs")
    permissions: Permission = Permission.READ_WRITE

    workers: int = 4
    progress_interval: float = PROGRESS_INTERVAL

    @staticmethod
    def load(section: SectionProxy) -> DriverConfig:
        """Load overridden variables from a section within a config file."""
        config = DriverConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))

        if "permissions" in section:
            config.permissions = Permission.parse(section["permissions"])

        config.workers = section.getint("workers", fallback=config.workers)
        config.progress_interval = section.getfloat(
            "progress_interval", fallback=config.progress_interval
        )

        return config


@dataclass
class ServerConfig:
    """Configuration variables of the command service."""

    endpoint: str = DEFAULT_ENDPOINT
    token: Optional[str] = None

    @staticmethod
    def load(section: SectionProxy) -> ServerConfig:
        """Load overridden variables from a section within a config file."""
        config = ServerConfig()

        config.endpoint = section.get("endpoint", fallback=config.endpoint)
        config.token = section.get("token", fallback=config.token) or None

        return config


@dataclass
class Config:
    """Configuration variables."""

    driver: DriverConfig = field(default_factory=DriverConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "driver" in parser:
                config.driver = DriverConfig.load(parser["driver"])

            if "server" in parser:
                config.server = ServerConfig.load(parser["server"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
