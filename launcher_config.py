#!/usr/bin/env python3
"""
Scan launcher configuration and logging setup.

Settings come from environment variables so that the same launcher build can
talk to a different scanner backend or expose the test-only options without
being rebuilt.

Author: Scan Launcher Contributors
License: MIT
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_SCANNER_URL = "http://localhost:25025"
DEFAULT_LOG_FILE = "scan_launcher.log"

ENV_SCANNER_URL = "SCAN_LAUNCHER_URL"
ENV_TEST_OPTIONS = "SCAN_LAUNCHER_TEST_OPTIONS"
ENV_CONNECT_TIMEOUT = "SCAN_LAUNCHER_CONNECT_TIMEOUT"
ENV_LOG_FILE = "SCAN_LAUNCHER_LOG_FILE"
ENV_LOG_LEVEL = "SCAN_LAUNCHER_LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class LauncherConfigError(ValueError):
    """Raised when an environment setting cannot be interpreted."""


@dataclass(frozen=True)
class LauncherSettings:
    """
    Runtime settings for the scan launcher.

    Args:
        scanner_url (str): Base URL of the scanner backend
        enable_test_options (bool): Expose test-only start options (e.g. --testnumberofsites)
        connect_timeout (float): Seconds to wait for the backend connection
        log_file (str): Log file path, empty string disables file logging
        log_level (str): Logging level name
    """
    scanner_url: str = DEFAULT_SCANNER_URL
    enable_test_options: bool = False
    connect_timeout: float = 30.0
    log_file: str = DEFAULT_LOG_FILE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LauncherSettings":
        """Build settings from environment variables, falling back to defaults"""
        environ = os.environ if environ is None else environ

        test_options = environ.get(ENV_TEST_OPTIONS, "").strip().lower()
        if test_options in _TRUE_VALUES:
            enable_test_options = True
        elif test_options in _FALSE_VALUES:
            enable_test_options = False
        else:
            raise LauncherConfigError(f"{ENV_TEST_OPTIONS} must be a boolean, got '{test_options}'")

        raw_timeout = environ.get(ENV_CONNECT_TIMEOUT)
        connect_timeout = cls.connect_timeout
        if raw_timeout:
            try:
                connect_timeout = float(raw_timeout)
            except ValueError:
                raise LauncherConfigError(f"{ENV_CONNECT_TIMEOUT} must be a number, got '{raw_timeout}'")
            if connect_timeout <= 0:
                raise LauncherConfigError(f"{ENV_CONNECT_TIMEOUT} must be positive, got {connect_timeout}")

        log_level = environ.get(ENV_LOG_LEVEL, cls.log_level).strip().upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise LauncherConfigError(f"{ENV_LOG_LEVEL} is not a logging level: '{log_level}'")

        return cls(
            scanner_url=environ.get(ENV_SCANNER_URL, DEFAULT_SCANNER_URL).rstrip("/"),
            enable_test_options=enable_test_options,
            connect_timeout=connect_timeout,
            log_file=environ.get(ENV_LOG_FILE, DEFAULT_LOG_FILE),
            log_level=log_level,
        )


def configure_logging(settings: LauncherSettings):
    """Configure root logging: file handler (optional) plus stream handler"""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.insert(0, logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
