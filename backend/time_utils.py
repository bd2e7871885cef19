"""
Time utilities for the Smart Task Manager application.

Single source of truth for "now", so activity log timestamps and token
expiry are computed from the same clock.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get current UTC time.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)
