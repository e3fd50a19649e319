"""DateTime utility functions for cardtasks."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.

    SQLite's DateTime column stores naive values, so every timestamp the
    engine writes is naive UTC to keep comparisons consistent after a
    round trip through the database.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(dt: Optional[datetime]) -> str:
    """
    Format a stored timestamp for command-line output.

    Args:
        dt: Naive UTC (or timezone-aware) datetime, or None

    Returns:
        String like "2025-11-22 14:13 UTC", or "-" when dt is None

    Examples:
        >>> format_timestamp(datetime(2025, 11, 22, 14, 13, 45))
        '2025-11-22 14:13 UTC'
        >>> format_timestamp(None)
        '-'
    """
    if dt is None:
        return "-"
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M UTC")
