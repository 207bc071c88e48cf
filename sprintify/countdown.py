"""Time-remaining calculations for sprint countdowns."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from sprintify.data import SprintStatus, parse_datetime, utcnow

MS_PER_DAY = 86_400_000
MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000
MS_PER_SECOND = 1_000


@dataclass
class TimeRemaining:
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    total_seconds: int = 0
    is_expired: bool = False

    def to_dict(self):
        return asdict(self)


def _ms_between(start: datetime, end: datetime) -> int:
    delta = end - start
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def calculate_time_remaining(end_date: Any, now: Optional[datetime] = None) -> TimeRemaining:
    """Break the time until ``end_date`` into days, hours, minutes and seconds.

    At or past the end date the result is expired with every field zero.
    """
    difference = _ms_between(now or utcnow(), parse_datetime(end_date))
    if difference <= 0:
        return TimeRemaining(is_expired=True)
    return TimeRemaining(
        days=difference // MS_PER_DAY,
        hours=difference % MS_PER_DAY // MS_PER_HOUR,
        minutes=difference % MS_PER_HOUR // MS_PER_MINUTE,
        seconds=difference % MS_PER_MINUTE // MS_PER_SECOND,
        total_seconds=difference // MS_PER_SECOND,
    )


def time_progress(start_date: Any, end_date: Any, now: Optional[datetime] = None) -> int:
    """Elapsed share of the sprint window as a whole percentage in 0..100."""
    start, end = parse_datetime(start_date), parse_datetime(end_date)
    total = _ms_between(start, end)
    elapsed = _ms_between(start, now or utcnow())
    if elapsed <= 0 or total <= 0:
        return 0
    if elapsed >= total:
        return 100
    return round(elapsed / total * 100)


def urgency_level(remaining: TimeRemaining) -> str:
    if remaining.is_expired:
        return "expired"
    if remaining.days <= 1:
        return "critical"
    if remaining.days <= 3:
        return "warning"
    return "normal"


def status_message(sprint, remaining: TimeRemaining) -> str:
    if remaining.is_expired:
        return "Sprint completed" if sprint.status == SprintStatus.COMPLETED else "Sprint has expired"
    level = urgency_level(remaining)
    if level == "critical":
        return "Final stretch, less than two days left"
    if level == "warning":
        return "Deadline is approaching"
    return "Plenty of time left, keep going"


def get_days_remaining(end_date: Any, now: Optional[datetime] = None) -> int:
    """Whole days left, rounded up, never negative."""
    difference = _ms_between(now or utcnow(), parse_datetime(end_date))
    return max(0, math.ceil(difference / MS_PER_DAY))


def calculate_progress(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return round(completed / total * 100)


def format_time(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_relative_time(value: Any, now: Optional[datetime] = None) -> str:
    diff_ms = _ms_between(parse_datetime(value), now or utcnow())
    days = diff_ms // MS_PER_DAY
    hours = diff_ms // MS_PER_HOUR
    minutes = diff_ms // MS_PER_MINUTE
    if days > 0:
        return f"{days} day{'s' if days != 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if minutes > 0:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    return "just now"

