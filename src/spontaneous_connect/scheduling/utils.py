"""
Countdown helpers for displaying a committed call time.
"""

from __future__ import annotations

from datetime import datetime

from spontaneous_connect.scheduling.models import as_utc


def time_until_call(next_call_time: datetime, now: datetime) -> str:
    """Human countdown such as ``"2h 5m"``, ``"15m"`` or ``"Time to call!"``."""
    seconds = (as_utc(next_call_time) - as_utc(now)).total_seconds()
    if seconds <= 0:
        return "Time to call!"
    hours, remainder = divmod(int(seconds), 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def is_time_to_call(next_call_time: datetime, now: datetime, tolerance_minutes: float = 5) -> bool:
    return abs((as_utc(next_call_time) - as_utc(now)).total_seconds()) <= tolerance_minutes * 60


def friendly_time_description(next_call_time: datetime, now: datetime) -> str:
    hours = (as_utc(next_call_time) - as_utc(now)).total_seconds() / 3600
    if hours < 1:
        return "very soon"
    if hours < 3:
        return "in a bit"
    if hours < 6:
        return "later today"
    if hours < 24:
        return "this evening"
    return "tomorrow"
