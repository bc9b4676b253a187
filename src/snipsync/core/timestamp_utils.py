"""Timestamp utilities for SnipSync.

All protocol timestamps are integer milliseconds since the Unix epoch.
These helpers read the clock and format timestamps for display.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def current_timestamp_ms() -> int:
    """Get current time as Unix timestamp in milliseconds."""
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)


def format_timestamp(ts_ms: Optional[int]) -> str:
    """Format a millisecond timestamp in the local timezone for display.

    Args:
        ts_ms: Milliseconds since epoch, or None

    Returns:
        Formatted string "YYYY-MM-DD HH:MM:SS" in local timezone,
        or empty string if ts_ms is None
    """
    if ts_ms is None:
        return ""
    utc_dt = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return utc_dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")
