"""
Logging setup for Phasing.

All modules log through loguru; `get_logger` binds the module name so the
sink format can show where a line came from.
"""

import sys
import traceback

from loguru import logger as _logger

from phasing.models.enums import LogLevel

_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

# Records from get_logger carry extra["name"]; give everything else a default.
_logger.configure(extra={"name": "phasing"})


def configure_logging(level: LogLevel = LogLevel.INFO, log_file: str = "") -> None:
    """
    Replace loguru's default sink with Phasing's console (and file) sinks.

    Args:
        level: Verbosity level.
        log_file: Optional file path to also log to.
    """
    full = level == LogLevel.FULL
    _logger.remove()
    _logger.add(
        sys.stderr,
        level=_LEVEL_MAP.get(level, "INFO"),
        format=_FORMAT,
        backtrace=full,
        diagnose=full,
    )
    if log_file:
        _logger.add(
            log_file,
            level="DEBUG",
            format=_FORMAT,
            rotation="10 MB",
            backtrace=full,
            diagnose=full,
        )


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Format an exception with its traceback as a single string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
