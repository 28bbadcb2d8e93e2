"""
Utility functions for playlist-mirror.

This module provides small helpers used across the application:
    - Trigger time validation for daily schedules
    - Batching of track ID lists for the Spotify API limits

Usage:
    from playlist_mirror.utils import parse_trigger_time, chunked
"""

import re
from typing import Iterator, Sequence, TypeVar

from playlist_mirror.core.exceptions import InvalidTimeFormatError


T = TypeVar("T")

# 24-hour clock, leading zero on the hour optional ("9:05" and "09:05" both valid)
TRIGGER_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def parse_trigger_time(trigger_time: str) -> tuple[int, int]:
    """
    Validate a daily trigger time and split it into hour and minute.

    Args:
        trigger_time: Wall-clock time in 24-hour "HH:mm" format.

    Returns:
        Tuple of (hour, minute).

    Raises:
        InvalidTimeFormatError: If the string is not a valid 24-hour time.

    Example:
        parse_trigger_time("13:30")  # (13, 30)
        parse_trigger_time("25:00")  # raises InvalidTimeFormatError
    """
    match = TRIGGER_TIME_PATTERN.match(trigger_time) if isinstance(trigger_time, str) else None
    if match is None:
        raise InvalidTimeFormatError(
            "Invalid time format. Please use HH:mm format (e.g., 13:30)",
            details={"trigger_time": trigger_time}
        )
    return int(match.group(1)), int(match.group(2))


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    Split a sequence into consecutive batches of at most ``size`` items.

    Example:
        list(chunked([1, 2, 3, 4, 5], 2))  # [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError("Batch size must be a positive integer")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
