"""
Logging configuration for playlist-mirror.

This module sets up the logging system with two outputs:
    - Console: Compact, colored level names (colorama)
    - Log file (optional): Full detail with timestamps, size-based rotation

Scheduled fires and poll ticks run on background threads, so every
outcome that would otherwise be invisible is reported through here.

Usage:
    from playlist_mirror.core.logger import setup_logging, get_logger

    setup_logging(level="INFO", log_file=None)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Polling started")
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path

import colorama
from colorama import Back, Fore, Style


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(name)-32s | %(levelname)-8s | %(threadName)-16s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log format for console output (compact)
CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"

# Chatty third-party loggers; only their errors are of interest
EXTERNAL_LOGGERS = (
    "spotipy",
    "urllib3",
    "urllib3.connectionpool",
    "requests",
    "apscheduler",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
)


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colors the level name on the console.

    Colors:
        - DEBUG: Cyan
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bright red on white
    """

    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Back.WHITE + Style.BRIGHT,
    }

    def __init__(self, fmt: str = CONSOLE_LOG_FORMAT, use_colors: bool = True) -> None:
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)

        # Work on a copy so file handlers see the plain level name
        record_copy = logging.makeLogRecord(record.__dict__)
        record_copy.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{Style.RESET_ALL}"
        return super().format(record_copy)


def parse_size(size_str: str) -> int:
    """
    Parse a size string to bytes.

    Args:
        size_str: Size string like "10MB", "1GB", "500KB".

    Returns:
        Size in bytes.

    Raises:
        ValueError: If the string is not a number followed by B/KB/MB/GB/TB.
    """
    multipliers = {
        "B": 1,
        "KB": 1024,
        "MB": 1024 ** 2,
        "GB": 1024 ** 3,
        "TB": 1024 ** 4,
    }

    match = re.match(r"^(\d+(?:\.\d+)?)\s*([KMGT]?B)$", size_str.upper().strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str}")

    number, unit = match.groups()
    return int(float(number) * multipliers[unit])


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    colored_output: bool = True,
    max_size: str = "10MB",
    backup_count: int = 3
) -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before the scheduler is started.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to a rotating log file. None disables file logging.
        colored_output: Color the level names on the console.
        max_size: Maximum log file size before rotation (e.g. "10MB").
        backup_count: Number of rotated files to keep.

    Behavior:
        1. Root logger captures DEBUG; handlers filter
        2. Console handler at the requested level
        3. Rotating file handler at DEBUG (if log_file is set)
        4. Third-party loggers raised to WARNING
    """
    colorama.init()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredFormatter(use_colors=colored_output))
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=parse_size(max_size),
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in EXTERNAL_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    get_logger("playlist_mirror").debug(
        f"Logging initialized - Level: {level}, File: {log_file}"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'playlist_mirror.sync.poller'.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().

    Note:
        Loggers obtained before setup_logging() is called will have no
        handlers and will only emit WARNING+ through Python's last resort.
    """
    return logging.getLogger(name)


def format_outcome_message(pair: str, outcome) -> str:
    """
    Format a one-line, colored summary of a reconcile outcome.

    Args:
        pair: String form of the pair key.
        outcome: A ReconcileOutcome.

    Returns:
        Colored message string.
    """
    if not outcome.success:
        return (
            f"{Fore.RED}Sync failed{Style.RESET_ALL} for {pair}: "
            f"{outcome.error} ({outcome.error_code})"
        )
    return (
        f"{Fore.GREEN}Synced{Style.RESET_ALL} {pair}: "
        f"added {Fore.GREEN}{outcome.added_count}{Style.RESET_ALL}, "
        f"duplicates removed {Fore.YELLOW}{outcome.removed_duplicate_count}{Style.RESET_ALL}, "
        f"already present {outcome.already_present_count}, "
        f"invalid skipped {outcome.skipped_invalid_count}, "
        f"playlist now has {Fore.CYAN}{outcome.final_track_count}{Style.RESET_ALL} tracks"
    )


def shutdown_logging() -> None:
    """
    Flush and close every handler on the root logger.

    Typically called in a finally block at application exit. After calling
    this function, logging will no longer produce output.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)
