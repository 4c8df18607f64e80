"""
Timestamp utilities for consistent time handling across the store.

Rows persist integer epoch milliseconds; models expose datetime objects.
"""

import time
from datetime import datetime
from typing import Optional


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def advance_ms(previous: int) -> int:
    """Return a timestamp strictly later than ``previous``.

    Args:
        previous: Epoch milliseconds already stored on a row

    Returns:
        Current epoch milliseconds, or previous + 1 if the clock has not moved on
    """
    return max(now_ms(), previous + 1)


def to_datetime(timestamp_ms: Optional[int] = None) -> datetime:
    """Convert epoch milliseconds to datetime object.

    Args:
        timestamp_ms: Epoch milliseconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    return datetime.fromtimestamp(timestamp_ms / 1000)
