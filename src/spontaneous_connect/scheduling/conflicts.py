from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from spontaneous_connect.scheduling.models import (
    WEEKEND_DAYS,
    WORKING_DAYS,
    BlockedInterval,
    RepeatKind,
    UserSchedulingProfile,
    Weekday,
)
from spontaneous_connect.scheduling.time_window import TimeWindowEvaluator

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ConflictResult:
    blocked: bool
    interval: Optional[BlockedInterval] = None
    escape: Optional[datetime] = None

    @property
    def reason(self) -> Optional[str]:
        return blocked_reason(self.interval) if self.interval else None


def blocked_reason(interval: BlockedInterval) -> str:
    """Diagnostic tag for a blocking interval, e.g. ``blocked_lunch_break``."""
    return "blocked_" + _WHITESPACE.sub("_", interval.name.strip().lower())


def interval_applies_on(interval: BlockedInterval, day: Weekday) -> bool:
    kind = interval.repeat_kind
    if kind is RepeatKind.WEEKDAYS:
        return day in WORKING_DAYS
    if kind is RepeatKind.WEEKENDS:
        return day in WEEKEND_DAYS
    if kind is RepeatKind.CUSTOM:
        return day in interval.days_of_week
    # DAILY, and ONCE: no calendar date is stored for one-time blocks, so they
    # are treated as blocking every day until the model carries a date.
    return True


def by_priority(intervals: Sequence[BlockedInterval]) -> list[BlockedInterval]:
    """Active intervals, highest priority first (stable for equal priorities)."""
    return sorted((i for i in intervals if i.active), key=lambda i: i.priority, reverse=True)


class ConflictChecker:
    """Finds the highest-priority blocked interval covering an instant."""

    def __init__(
        self,
        window_evaluator: TimeWindowEvaluator | None = None,
        buffer_minutes: int = 15,
    ) -> None:
        self._window = window_evaluator or TimeWindowEvaluator()
        self._buffer = timedelta(minutes=buffer_minutes)

    def evaluate(
        self,
        instant: datetime,
        intervals: Sequence[BlockedInterval],
        profile: UserSchedulingProfile,
    ) -> ConflictResult:
        local = self._window.to_local(instant, profile)
        day = Weekday.of(local)
        # Bounds are inclusive and compared at minute resolution.
        time_of_day = local.time().replace(second=0, microsecond=0)

        for interval in by_priority(intervals):
            if not interval_applies_on(interval, day):
                continue
            if interval.start_time <= time_of_day <= interval.end_time:
                return ConflictResult(
                    blocked=True,
                    interval=interval,
                    escape=self.escape_from(local, interval, profile),
                )
        return ConflictResult(blocked=False)

    def escape_from(
        self,
        local: datetime,
        interval: BlockedInterval,
        profile: UserSchedulingProfile,
    ) -> datetime:
        """End of ``interval`` on the local day of ``local`` plus the buffer, kept in the window."""
        block_end = datetime.combine(local.date(), interval.end_time, tzinfo=profile.tz)
        return self._window.clamp(block_end + self._buffer, profile)
