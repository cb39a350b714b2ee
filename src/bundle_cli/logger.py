# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import logging
import os
import sys
from typing import List, Optional

DEBUG_ENV_VAR = "BUNDLE_CLI_DEBUG"
LOG_FILE_ENV_VAR = "BUNDLE_CLI_LOG_FILE"

_CONSOLE_HANDLER_NAME = "bundle-cli-console"
_FILE_HANDLER_NAME = "bundle-cli-file"

# Loggers created through setup_logger, so debug mode can be switched on after import
_managed_loggers: List[logging.Logger] = []


class LevelPrefixFormatter(logging.Formatter):
    """Formatter that prints INFO records bare and prefixes every other level."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno == logging.INFO:
            return message
        return f"[{record.levelname}] {message}"


class DebugStream:
    """
    Write-only text stream forwarding each complete line to ``logger.debug``.

    Used as the sink of external command output that must stay hidden unless
    debug mode is enabled.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger
        self._buffer = ""

    def write(self, data: str) -> int:
        self._buffer += data
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            if line:
                self.logger.debug(line)
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            self.logger.debug(self._buffer)
            self._buffer = ""


def is_debug_enabled() -> bool:
    """Return True if debug mode was requested through the environment."""
    return os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in {"1", "true", "yes", "on"}


def enable_debug() -> None:
    """Raise the console level of every managed logger to DEBUG."""
    os.environ[DEBUG_ENV_VAR] = "1"
    for logger in _managed_loggers:
        for handler in logger.handlers:
            if handler.get_name() == _CONSOLE_HANDLER_NAME:
                handler.setLevel(logging.DEBUG)


def setup_logger(
    name: str,
    log_file_path: Optional[str] = None,
    debug: Optional[bool] = None,
) -> logging.Logger:
    """
    Create or return a logger writing to stderr and, optionally, to a file.

    Console output shows INFO and above, or DEBUG and above in debug mode.
    The file handler, when configured, always records DEBUG.

    Args:
        name: Logger name, usually the calling module's ``__name__``.
        log_file_path: Optional log file. Falls back to BUNDLE_CLI_LOG_FILE.
        debug: Force debug mode on or off. Defaults to BUNDLE_CLI_DEBUG.

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = True

    if debug is None:
        debug = is_debug_enabled()

    handler_names = {handler.get_name() for handler in logger.handlers}
    formatter = LevelPrefixFormatter("%(message)s")

    if _CONSOLE_HANDLER_NAME not in handler_names:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.set_name(_CONSOLE_HANDLER_NAME)
        console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    log_file_path = log_file_path or os.environ.get(LOG_FILE_ENV_VAR)
    if log_file_path and _FILE_HANDLER_NAME not in handler_names:
        file_handler = logging.FileHandler(log_file_path)
        file_handler.set_name(_FILE_HANDLER_NAME)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if logger not in _managed_loggers:
        _managed_loggers.append(logger)

    return logger
