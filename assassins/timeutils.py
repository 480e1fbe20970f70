"""Timezone-aware time utilities for the game."""

import datetime
from zoneinfo import ZoneInfo
from .config import TIMEZONE


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(ZoneInfo(TIMEZONE))


def timestamp() -> int:
    """Get the current time as an integer epoch timestamp."""
    return int(now().timestamp())


def from_timestamp(ts: int) -> datetime.datetime:
    """Convert a stored epoch timestamp to a datetime in game timezone."""
    return datetime.datetime.fromtimestamp(ts, ZoneInfo(TIMEZONE))


def format_timestamp(ts: int) -> str:
    """Format a stored timestamp for display."""
    return from_timestamp(ts).strftime("%b %d, %H:%M")
