#!/usr/bin/env python3
"""
Common utility functions for message extraction
"""

import os
from datetime import datetime, timezone
from typing import Optional


# ============================================================================
# Apple Timestamps
# ============================================================================

# Apple Cocoa epoch offset: seconds between Unix epoch (1970) and Apple epoch (2001)
APPLE_EPOCH_OFFSET = 978307200

# Databases written before macOS 10.13 store seconds, later ones nanoseconds
NANOSECOND_THRESHOLD = 1_000_000_000_000


def convert_apple_timestamp(apple_timestamp: Optional[int]) -> Optional[datetime]:
    """Convert Apple Cocoa timestamp (nanoseconds since 2001-01-01) to datetime.

    Values too small to be nanoseconds are treated as seconds, which is how
    older databases record message dates.

    Args:
        apple_timestamp: Timestamp in Apple Cocoa format

    Returns:
        datetime object in UTC, or None if timestamp is invalid/zero

    Example:
        >>> convert_apple_timestamp(0) is None
        True
        >>> convert_apple_timestamp(631152000000000000).year
        2021
    """
    if not apple_timestamp or apple_timestamp <= 0:
        return None

    if apple_timestamp >= NANOSECOND_THRESHOLD:
        seconds = apple_timestamp / 1_000_000_000
    else:
        seconds = apple_timestamp
    return convert_apple_seconds(seconds)


def convert_apple_seconds(seconds: Optional[float]) -> Optional[datetime]:
    """Convert seconds since 2001-01-01 to a UTC datetime.

    Args:
        seconds: Seconds since the Apple epoch

    Returns:
        datetime object in UTC, or None if the value is invalid/zero
    """
    if not seconds or seconds <= 0:
        return None

    try:
        unix_timestamp = seconds + APPLE_EPOCH_OFFSET
        return datetime.fromtimestamp(unix_timestamp, tz=timezone.utc)
    except (ValueError, OSError, OverflowError):
        return None


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as 'YYYY-MM-DD HH:MM:SS UTC'.

    Args:
        dt: datetime object

    Returns:
        Formatted string or None
    """
    if not dt:
        return None
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


# ============================================================================
# Text Helpers
# ============================================================================


def utf16_length(text: str) -> int:
    """Length of text in UTF-16 code units.

    Attribute run lengths are recorded in UTF-16 code units, so offsets
    into message text are measured the same way.

    Example:
        >>> utf16_length("abc")
        3
        >>> utf16_length("\U0001F600")
        2
    """
    return len(text.encode("utf-16-le")) // 2


def utf16_slice(text: str, start: int, end: int) -> str:
    """Slice text by UTF-16 code unit offsets."""
    encoded = text.encode("utf-16-le")
    return encoded[start * 2 : end * 2].decode("utf-16-le", errors="replace")


def percent(count: int, total: int) -> float:
    """Percentage of count over total, 0.0 when total is zero.

    Example:
        >>> percent(1, 4)
        25.0
        >>> percent(3, 0)
        0.0
    """
    if not total:
        return 0.0
    return count * 100.0 / total


def format_bytes(size: int) -> str:
    """Format a byte count for display (e.g. '1.50 MB')."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024
        if value < 1024 or unit == "TB":
            break
    return f"{value:.2f} {unit}"


# ============================================================================
# Environment Helpers
# ============================================================================


def default_worker_count() -> int:
    """Compute default worker count as CPU count minus one, minimum 1."""
    from multiprocessing import cpu_count

    return max(1, cpu_count() - 1)


def parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable string.

    Args:
        value: String value from environment variable

    Returns:
        True if value is truthy ("true", "1", "yes", "on"), False otherwise

    Example:
        >>> parse_bool_env("true")
        True
        >>> parse_bool_env("false")
        False
    """
    return value.lower() in ("true", "1", "yes", "on")


def parse_int_env(name: str, default: Optional[int] = None) -> Optional[int]:
    """Read an integer environment variable, falling back to default.

    Args:
        name: Environment variable name
        default: Value returned when unset or not an integer

    Returns:
        Parsed integer or default
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default
