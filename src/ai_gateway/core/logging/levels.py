"""
Numeric log levels used across the gateway.

The gateway speaks in four verbosity steps instead of Python's five
named levels:

    1 = MINIMAL  - startup, shutdown, failures
    2 = NORMAL   - one line per request, artifact deletions (default)
    3 = VERBOSE  - tool argv, proxy targets, sweep details
    4 = DEBUG    - everything else

``coerce_level`` accepts ints, numeric strings, our names and Python's
level names so that ``LOG_LEVEL=info`` keeps working.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Gateway verbosity levels (1 = quietest)."""
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4


# Gateway level -> threshold for the console handler
LEVEL_MAP = {
    LogLevel.MINIMAL: logging.WARNING,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.DEBUG: logging.DEBUG - 5,
}

LEVEL_NAMES = {
    1: "MINIMAL",
    2: "NORMAL",
    3: "VERBOSE",
    4: "DEBUG",
}

_NAME_TO_LEVEL = {
    "MINIMAL": LogLevel.MINIMAL,
    "NORMAL": LogLevel.NORMAL,
    "VERBOSE": LogLevel.VERBOSE,
    "DEBUG": LogLevel.DEBUG,
    "TRACE": LogLevel.DEBUG,
    "CRITICAL": LogLevel.MINIMAL,
    "ERROR": LogLevel.MINIMAL,
    "WARNING": LogLevel.MINIMAL,
    "WARN": LogLevel.MINIMAL,
    "INFO": LogLevel.NORMAL,
}


def coerce_level(value: Any) -> LogLevel:
    """
    Convert config/env input to a LogLevel.

    Examples:
        >>> coerce_level("info")
        <LogLevel.NORMAL: 2>
        >>> coerce_level(3)
        <LogLevel.VERBOSE: 3>
        >>> coerce_level(logging.ERROR)
        <LogLevel.MINIMAL: 1>

    Anything unrecognised falls back to NORMAL.
    """
    if isinstance(value, LogLevel):
        return value

    if isinstance(value, int) and not isinstance(value, bool):
        if 1 <= value <= 4:
            return LogLevel(value)
        if value >= logging.WARNING:
            return LogLevel.MINIMAL
        if value >= logging.INFO:
            return LogLevel.NORMAL
        return LogLevel.DEBUG

    if isinstance(value, str):
        text = value.strip().upper()
        if text.isdigit():
            return coerce_level(int(text))
        return _NAME_TO_LEVEL.get(text, LogLevel.NORMAL)

    return LogLevel.NORMAL
