"""
Logging configuration for spot-archiver.

This module sets up the logging system with up to three outputs:
    - Console: colored, compact lines at the configured verbosity
    - spot-archiver.log: complete rotating log of all events (DEBUG and above)
    - spot-archiver-errors.log: only ERROR and CRITICAL records

File outputs are only created when a log directory is configured. The
service runs for a long time, so files rotate instead of being recreated
on every run.

Usage:
    from spot_archiver.core.logger import setup_logging, get_logger

    setup_logging("info", log_dir)  # Call once at startup
    logger = get_logger(__name__)   # Get logger for each module

    logger.info("Archival run started")
"""

import logging
import logging.handlers
import sys
from pathlib import Path

import colorama
from colorama import Back, Fore, Style

from spot_archiver.utils import ensure_directory


# Log file names (created in the configured log directory)
LOG_FULL_FILENAME = "spot-archiver.log"
LOG_ERRORS_FILENAME = "spot-archiver-errors.log"

# Rotation settings for both files
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Console lines carry a short timestamp: the service runs unattended
CONSOLE_DATE_FORMAT = "%H:%M:%S"

# Verbosity names accepted on the command line and in config.yaml
VERBOSITY_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Third-party loggers that are far too chatty at DEBUG
NOISY_LIBRARIES = ("spotipy", "urllib3", "requests", "apscheduler", "PIL")


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.

    Colors:
        - DEBUG: Cyan
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bright red on white
    """

    LEVEL_COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Back.WHITE + Style.BRIGHT,
    }

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record with colors.

        Args:
            record: The log record to format.

        Returns:
            Formatted string with ANSI color codes.
        """
        color = self.LEVEL_COLORS.get(record.levelno, Fore.WHITE)
        timestamp = self.formatTime(record, CONSOLE_DATE_FORMAT)
        colored_levelname = f"{color}{record.levelname}{Style.RESET_ALL}"

        message = f"{timestamp} {colored_levelname}: {record.getMessage()}"

        if record.exc_info and record.levelno >= logging.ERROR:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return message


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only allows ERROR and CRITICAL level records.

    Used by the error log file handler to exclude DEBUG, INFO, and WARNING.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def parse_verbosity(verbosity: str) -> int:
    """
    Convert a verbosity name to a logging level.

    Args:
        verbosity: One of "error", "warn", "info", "debug" (case-insensitive).

    Returns:
        The matching logging level constant.

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        return VERBOSITY_LEVELS[verbosity.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown verbosity '{verbosity}', expected one of: error, warn, info, debug"
        ) from None


def setup_logging(verbosity: str = "info", log_dir: Path | None = None) -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any background thread starts.

    Args:
        verbosity: Console verbosity ("error", "warn", "info", "debug").
        log_dir: Directory for the rotating log files. None disables files.

    Behavior:
        1. Configure root logger level to DEBUG and remove existing handlers
        2. Console handler on stderr at the requested verbosity
        3. If log_dir is given:
           - full rotating log at DEBUG
           - error-only rotating log (ErrorOnlyFilter)
        4. Raise noisy third-party loggers to WARNING
    """
    colorama.init()
    level = parse_verbosity(verbosity)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        ensure_directory(log_dir)
        file_formatter = logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT)

        full_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FULL_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8"
        )
        full_handler.setLevel(logging.DEBUG)
        full_handler.setFormatter(file_formatter)
        root_logger.addHandler(full_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_ERRORS_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8"
        )
        error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
        error_handler.setFormatter(file_formatter)
        error_handler.addFilter(ErrorOnlyFilter())
        root_logger.addHandler(error_handler)

    for library in NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'spot_archiver.archiver.job'.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().
    """
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """
    Flush and close every handler attached to the root logger.

    Typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
