"""
Unit tests for blocked interval matching.
"""

from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest

from spontaneous_connect.scheduling.conflicts import (
    ConflictChecker,
    blocked_reason,
    by_priority,
    interval_applies_on,
)
from spontaneous_connect.scheduling.models import (
    BlockedInterval,
    RepeatKind,
    UserSchedulingProfile,
    Weekday,
)
from spontaneous_connect.shared.exceptions import ConfigurationError

TOKYO = ZoneInfo("Asia/Tokyo")


def tokyo(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2023, 10, day, hour, minute, second, tzinfo=TOKYO)


def block(
    name: str,
    start: time,
    end: time,
    repeat_kind: RepeatKind = RepeatKind.DAILY,
    priority: int = 0,
    **kwargs,
) -> BlockedInterval:
    return BlockedInterval(
        id=name.lower(),
        name=name,
        start_time=start,
        end_time=end,
        repeat_kind=repeat_kind,
        priority=priority,
        **kwargs,
    )


LUNCH = block("Lunch", time(12, 0), time(13, 0), priority=1)


class TestConflictChecker:
    """Tests for ConflictChecker.evaluate."""

    def test_lunch_block_reports_reason_and_escape(self, tokyo_profile: UserSchedulingProfile) -> None:
        result = ConflictChecker().evaluate(tokyo(25, 12, 30), [LUNCH], tokyo_profile)

        assert result.blocked
        assert result.interval == LUNCH
        assert result.reason == "blocked_lunch"
        assert result.escape == tokyo(25, 13, 15)

    def test_free_time_is_not_blocked(self, tokyo_profile: UserSchedulingProfile) -> None:
        result = ConflictChecker().evaluate(tokyo(25, 14, 0), [LUNCH], tokyo_profile)
        assert not result.blocked
        assert result.reason is None
        assert result.escape is None

    def test_bounds_are_inclusive(self, tokyo_profile: UserSchedulingProfile) -> None:
        checker = ConflictChecker()
        assert checker.evaluate(tokyo(25, 12, 0), [LUNCH], tokyo_profile).blocked
        assert checker.evaluate(tokyo(25, 13, 0), [LUNCH], tokyo_profile).blocked
        assert not checker.evaluate(tokyo(25, 13, 1), [LUNCH], tokyo_profile).blocked
        assert not checker.evaluate(tokyo(25, 11, 59), [LUNCH], tokyo_profile).blocked

    def test_seconds_within_end_minute_are_blocked(self, tokyo_profile: UserSchedulingProfile) -> None:
        assert ConflictChecker().evaluate(tokyo(25, 13, 0, 45), [LUNCH], tokyo_profile).blocked

    def test_highest_priority_match_wins(self, tokyo_profile: UserSchedulingProfile) -> None:
        meeting = block("Team Meeting", time(12, 15), time(14, 0), priority=5)
        result = ConflictChecker().evaluate(tokyo(25, 12, 30), [LUNCH, meeting], tokyo_profile)

        assert result.interval == meeting
        assert result.reason == "blocked_team_meeting"
        assert result.escape == tokyo(25, 14, 15)

    def test_inactive_intervals_are_ignored(self, tokyo_profile: UserSchedulingProfile) -> None:
        inactive = block("Gym", time(12, 0), time(13, 0), active=False)
        assert not ConflictChecker().evaluate(tokyo(25, 12, 30), [inactive], tokyo_profile).blocked

    def test_escape_is_clamped_into_window(self, tokyo_profile: UserSchedulingProfile) -> None:
        """A block ending at 20:50 escapes to the next morning, not 21:05."""
        evening = block("Dinner", time(20, 0), time(20, 50))
        result = ConflictChecker().evaluate(tokyo(25, 20, 30), [evening], tokyo_profile)
        assert result.escape == tokyo(26, 9, 0)

    def test_custom_buffer(self, tokyo_profile: UserSchedulingProfile) -> None:
        result = ConflictChecker(buffer_minutes=0).evaluate(tokyo(25, 12, 30), [LUNCH], tokyo_profile)
        assert result.escape == tokyo(25, 13, 0)


class TestRepeatKinds:
    """Tests for the day-match rule of each repeat kind."""

    @pytest.mark.parametrize(
        "repeat_kind, day, expected",
        [
            (RepeatKind.DAILY, Weekday.SUN, True),
            (RepeatKind.WEEKDAYS, Weekday.FRI, True),
            (RepeatKind.WEEKDAYS, Weekday.SAT, False),
            (RepeatKind.WEEKENDS, Weekday.SUN, True),
            (RepeatKind.WEEKENDS, Weekday.MON, False),
            (RepeatKind.ONCE, Weekday.TUE, True),
            (RepeatKind.ONCE, Weekday.SAT, True),
        ],
    )
    def test_day_match(self, repeat_kind: RepeatKind, day: Weekday, expected: bool) -> None:
        interval = block("Focus", time(9, 0), time(10, 0), repeat_kind=repeat_kind)
        assert interval_applies_on(interval, day) is expected

    def test_custom_days(self) -> None:
        interval = block(
            "Class",
            time(18, 0),
            time(19, 0),
            repeat_kind=RepeatKind.CUSTOM,
            days_of_week="Tue,Thu",
        )
        assert interval_applies_on(interval, Weekday.TUE)
        assert interval_applies_on(interval, Weekday.THU)
        assert not interval_applies_on(interval, Weekday.WED)

    def test_weekday_block_does_not_apply_on_saturday(self, tokyo_profile: UserSchedulingProfile) -> None:
        work = block("Work", time(9, 0), time(18, 0), repeat_kind=RepeatKind.WEEKDAYS)
        checker = ConflictChecker()
        assert checker.evaluate(tokyo(25, 11), [work], tokyo_profile).blocked
        assert not checker.evaluate(tokyo(28, 11), [work], tokyo_profile).blocked


class TestBlockedIntervalModel:
    """Tests for BlockedInterval validation and helpers."""

    def test_start_must_precede_end(self) -> None:
        with pytest.raises(ConfigurationError):
            block("Broken", time(13, 0), time(12, 0))

    def test_custom_requires_days(self) -> None:
        with pytest.raises(ConfigurationError):
            block("Class", time(18, 0), time(19, 0), repeat_kind=RepeatKind.CUSTOM)

    def test_priority_range(self) -> None:
        with pytest.raises(ConfigurationError):
            block("Urgent", time(8, 0), time(9, 0), priority=11)

    def test_reason_normalizes_name(self) -> None:
        assert blocked_reason(block("  Kids   Pickup ", time(15, 0), time(16, 0))) == "blocked_kids_pickup"

    def test_by_priority_orders_descending_and_drops_inactive(self) -> None:
        low = block("Low", time(8, 0), time(9, 0), priority=0)
        high = block("High", time(8, 0), time(9, 0), priority=9)
        off = block("Off", time(8, 0), time(9, 0), priority=10, active=False)
        assert by_priority([low, off, high]) == [high, low]
