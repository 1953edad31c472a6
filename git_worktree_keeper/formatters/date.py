"""Date and time formatting utilities."""

import time
from datetime import datetime
from typing import Optional


def format_date(timestamp: int) -> str:
    """
    Format a unix timestamp as a YYYY-MM-DD string.

    Args:
        timestamp: Seconds since the epoch

    Returns:
        Formatted date string, or "" for a zero timestamp
    """
    if not timestamp:
        return ""
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d")


def format_age(timestamp: int, now: Optional[float] = None) -> str:
    """
    Format the age of a commit relative to now.

    Args:
        timestamp: Commit time in seconds since the epoch
        now: Reference time (defaults to the current time)

    Returns:
        Short relative age such as "5m", "3h", "2d", "6w" or "1y"
    """
    if not timestamp:
        return ""
    seconds = max(0, int((now if now is not None else time.time()) - timestamp))

    if seconds < 60:
        return "now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    days = hours // 24
    if days < 14:
        return f"{days}d"
    if days < 365:
        return f"{days // 7}w"
    return f"{days // 365}y"
