"""Logging setup shared by the CLI and library entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Third-party loggers that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


def parse_log_level(value: str) -> int:
    """Convert a level name to a logging level.

    Args:
        value: Level name, case-insensitive

    Returns:
        The numeric logging level

    Raises:
        ValueError: If the name is not a known level
    """
    try:
        return _LEVELS[value.strip().lower()]
    except KeyError:
        valid = ", ".join(_LEVELS)
        raise ValueError(f"Invalid log level {value!r}. Valid levels: {valid}") from None


def configure_logging(level: str | int = "info") -> None:
    """Configure the root logger.

    HTTP client loggers stay at WARNING unless debugging.

    Args:
        level: Level name or numeric level
    """
    numeric = parse_log_level(level) if isinstance(level, str) else level
    logging.basicConfig(level=numeric, format=LOG_FORMAT, force=True)
    noisy_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
