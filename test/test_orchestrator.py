"""
Tests for the scheduling orchestrator: quota check, strategy order and the
acceptance check.
"""

import random
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from spontaneous_connect.scheduling.conflicts import interval_applies_on
from spontaneous_connect.scheduling.models import (
    BlockedInterval,
    RepeatKind,
    ScheduleState,
    SchedulerSettings,
    StrategyResult,
    UserSchedulingProfile,
    Weekday,
)
from spontaneous_connect.scheduling.orchestrator import (
    DAILY_LIMIT_REACHED,
    MIN_GAP_VIOLATION,
    PAST_TIME,
    SchedulingOrchestrator,
)
from spontaneous_connect.scheduling.time_window import INACTIVE_DAY, OUTSIDE_DAILY_WINDOW

TOKYO = ZoneInfo("Asia/Tokyo")
TODAY = date(2023, 10, 25)

LUNCH = BlockedInterval(
    id="lunch",
    name="Lunch",
    start_time=time(12, 0),
    end_time=time(13, 0),
    repeat_kind=RepeatKind.DAILY,
    priority=1,
)


class StubStrategy:
    """Strategy returning a canned result and counting calls."""

    def __init__(self, name: str, instant: datetime | None = None, constraints=()) -> None:
        self.name = name
        self.instant = instant
        self.constraints = tuple(constraints)
        self.calls = 0

    def search(self, context) -> StrategyResult:
        self.calls += 1
        return StrategyResult(self.name, self.instant, 4, self.constraints)


def assert_in_window(instant: datetime, profile: UserSchedulingProfile) -> None:
    local = instant.astimezone(profile.tz)
    assert profile.daily_window.contains(local.time())
    assert Weekday.of(local) in profile.active_days


class TestScheduleProperties:
    """Accepted instants honour window, gap and blocked intervals."""

    def test_tokyo_morning_without_history(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        result = SchedulingOrchestrator(rng=random.Random(1)).schedule(
            tokyo_profile, ScheduleState.fresh(TODAY), [], now
        )

        assert result.success
        assert result.strategy == "random_offset"
        assert_in_window(result.instant, tokyo_profile)
        assert result.instant >= now + timedelta(minutes=tokyo_profile.min_gap_minutes)

    @pytest.mark.parametrize("seed", range(25))
    def test_invariants_hold_across_seeds(
        self, tokyo_profile: UserSchedulingProfile, now: datetime, seed: int
    ) -> None:
        profile = replace(tokyo_profile, active_days=Weekday.parse_many("Mon,Tue,Wed,Thu,Fri"))
        state = ScheduleState(daily_reset_date=TODAY, calls_today=1, last_call_time=now - timedelta(minutes=10))
        work_focus = BlockedInterval(
            id="focus",
            name="Focus",
            start_time=time(14, 0),
            end_time=time(17, 30),
            repeat_kind=RepeatKind.WEEKDAYS,
            priority=3,
        )
        intervals = [LUNCH, work_focus]

        result = SchedulingOrchestrator(rng=random.Random(seed)).schedule(profile, state, intervals, now)

        assert result.success
        assert_in_window(result.instant, profile)
        assert result.instant > now
        gap = result.relaxation.min_gap_minutes if result.relaxation else profile.min_gap_minutes
        assert result.instant - state.last_call_time >= timedelta(minutes=gap)

        local = result.instant.astimezone(TOKYO)
        minute = local.time().replace(second=0, microsecond=0)
        for interval in intervals:
            if interval_applies_on(interval, Weekday.of(local)):
                assert not interval.start_time <= minute <= interval.end_time

    def test_attempts_and_constraints_are_aggregated(
        self, tokyo_profile: UserSchedulingProfile, now: datetime
    ) -> None:
        first = StubStrategy("first", constraints=["blocked_lunch"])
        second = StubStrategy("second", instant=now + timedelta(hours=3), constraints=["outside_daily_window"])
        orchestrator = SchedulingOrchestrator(strategies=[first, second])

        result = orchestrator.schedule(tokyo_profile, ScheduleState.fresh(TODAY), [], now)

        assert result.success
        assert result.strategy == "second"
        assert result.attempts == 8
        assert result.constraints == ("blocked_lunch", "outside_daily_window")

    def test_later_strategies_skipped_after_success(
        self, tokyo_profile: UserSchedulingProfile, now: datetime
    ) -> None:
        first = StubStrategy("first", instant=now + timedelta(hours=1))
        second = StubStrategy("second", instant=now + timedelta(hours=2))
        SchedulingOrchestrator(strategies=[first, second]).schedule(
            tokyo_profile, ScheduleState.fresh(TODAY), [], now
        )
        assert (first.calls, second.calls) == (1, 0)


class TestQuota:
    """Tests for the daily limit short-circuit and the stale reset rule."""

    def test_limit_reached_schedules_next_morning(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        strategy = StubStrategy("never")
        orchestrator = SchedulingOrchestrator(rng=random.Random(3), strategies=[strategy])
        state = ScheduleState(daily_reset_date=TODAY, calls_today=3)

        result = orchestrator.schedule(tokyo_profile, state, [LUNCH], now)

        assert result.success
        assert result.constraints == (DAILY_LIMIT_REACHED,)
        assert result.strategy == "daily_limit"
        assert result.attempts == 1
        assert strategy.calls == 0
        morning = datetime(2023, 10, 26, 9, 0, tzinfo=TOKYO)
        assert morning <= result.instant < morning + timedelta(minutes=60)

    def test_limit_ignores_blocked_intervals(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        early_block = BlockedInterval(id="gym", name="Gym", start_time=time(8, 0), end_time=time(11, 0))
        state = ScheduleState(daily_reset_date=TODAY, calls_today=5)
        result = SchedulingOrchestrator(rng=random.Random(3)).schedule(tokyo_profile, state, [early_block], now)
        assert result.constraints == (DAILY_LIMIT_REACHED,)

    def test_stale_reset_date_runs_normal_search(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        state = ScheduleState(daily_reset_date=TODAY - timedelta(days=1), calls_today=3)
        result = SchedulingOrchestrator(rng=random.Random(3)).schedule(tokyo_profile, state, [], now)

        assert result.success
        assert DAILY_LIMIT_REACHED not in result.constraints
        assert result.strategy == "random_offset"

    def test_next_day_jitter_range(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        orchestrator = SchedulingOrchestrator(SchedulerSettings(next_day_jitter_minutes=10), rng=random.Random(9))
        morning = datetime(2023, 10, 26, 9, 0, tzinfo=TOKYO)
        for _ in range(30):
            slot = orchestrator.next_day_first_slot(tokyo_profile, now)
            assert morning <= slot < morning + timedelta(minutes=10)


class TestExhaustion:
    """Tests for the failure path."""

    def test_all_strategies_fail(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        strategies = [
            StubStrategy("a", constraints=["blocked_lunch"]),
            StubStrategy("b", constraints=["blocked_lunch", "inactive_day"]),
        ]
        result = SchedulingOrchestrator(strategies=strategies).schedule(
            tokyo_profile, ScheduleState.fresh(TODAY), [], now
        )

        assert not result.success
        assert result.instant is None
        assert result.attempts == 8
        assert result.constraints == ("blocked_lunch", "inactive_day")
        assert result.error == "Unable to find valid call time within constraints"

    def test_high_priority_all_day_block_exhausts_every_strategy(
        self, tokyo_profile: UserSchedulingProfile, now: datetime
    ) -> None:
        always = BlockedInterval(id="x", name="Night Shift", start_time=time(0, 0), end_time=time(23, 59), priority=5)
        settings = SchedulerSettings(max_attempts=9)
        result = SchedulingOrchestrator(settings, rng=random.Random(2)).schedule(
            tokyo_profile, ScheduleState.fresh(TODAY), [always], now
        )

        assert not result.success
        assert "blocked_night_shift" in result.constraints
        # 9 random + 6 preferred slots + 3 steps of 3 relaxed draws.
        assert result.attempts == 9 + 6 + 9


class TestValidate:
    """Tests for the ordered acceptance check."""

    def test_lunch_candidate_is_rejected_with_escape(
        self, tokyo_profile: UserSchedulingProfile, now: datetime
    ) -> None:
        candidate = datetime(2023, 10, 25, 3, 30, tzinfo=ZoneInfo("UTC"))
        result = SchedulingOrchestrator().validate(candidate, tokyo_profile, ScheduleState.fresh(TODAY), [LUNCH], now)

        assert not result.valid
        assert result.reason == "blocked_lunch"
        assert result.suggestion == datetime(2023, 10, 25, 13, 15, tzinfo=TOKYO)

    def test_gap_checked_before_blocks(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        last_call = datetime(2023, 10, 25, 12, 10, tzinfo=TOKYO)
        state = ScheduleState(daily_reset_date=TODAY, last_call_time=last_call)
        candidate = datetime(2023, 10, 25, 12, 30, tzinfo=TOKYO)

        result = SchedulingOrchestrator().validate(candidate, tokyo_profile, state, [LUNCH], now)

        assert result.reason == MIN_GAP_VIOLATION
        assert result.suggestion == last_call + timedelta(minutes=45)

    def test_relaxed_gap_override(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        state = ScheduleState(daily_reset_date=TODAY, last_call_time=now)
        candidate = now + timedelta(minutes=30)
        orchestrator = SchedulingOrchestrator()

        assert not orchestrator.validate(candidate, tokyo_profile, state, [], now).valid
        assert orchestrator.validate(candidate, tokyo_profile, state, [], now, min_gap_minutes=22.5).valid

    def test_window_checked_first(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        candidate = datetime(2023, 10, 25, 22, 0, tzinfo=TOKYO)
        state = ScheduleState(daily_reset_date=TODAY, last_call_time=candidate)
        result = SchedulingOrchestrator().validate(candidate, tokyo_profile, state, [], now)
        assert result.reason == OUTSIDE_DAILY_WINDOW

    def test_inactive_day(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        profile = replace(tokyo_profile, active_days=Weekday.parse_many("Mon"))
        result = SchedulingOrchestrator().validate(now, profile, ScheduleState.fresh(TODAY), [], now)
        assert result.reason == INACTIVE_DAY

    def test_past_time_suggests_now_plus_gap(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        candidate = now - timedelta(minutes=30)
        result = SchedulingOrchestrator().validate(candidate, tokyo_profile, ScheduleState.fresh(TODAY), [], now)

        assert result.reason == PAST_TIME
        assert result.suggestion == now + timedelta(minutes=45)

    def test_now_itself_is_past(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        result = SchedulingOrchestrator().validate(now, tokyo_profile, ScheduleState.fresh(TODAY), [], now)
        assert result.reason == PAST_TIME

    def test_valid_instant(self, tokyo_profile: UserSchedulingProfile, now: datetime) -> None:
        result = SchedulingOrchestrator().validate(
            now + timedelta(hours=3), tokyo_profile, ScheduleState.fresh(TODAY), [LUNCH], now
        )
        assert result.valid
        assert result.reason is None
        assert result.suggestion is None
