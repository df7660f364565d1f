from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from spontaneous_connect.scheduling.conflicts import ConflictChecker
from spontaneous_connect.scheduling.models import (
    BlockedInterval,
    ScheduleState,
    SchedulerSettings,
    SchedulingResult,
    UserSchedulingProfile,
    ValidationResult,
    as_utc,
)
from spontaneous_connect.scheduling.strategies import (
    CandidateStrategy,
    ConstraintRelaxationStrategy,
    PreferredSlotStrategy,
    RandomOffsetStrategy,
    SearchContext,
    note_constraint,
)
from spontaneous_connect.scheduling.time_window import TimeWindowEvaluator
from spontaneous_connect.shared.logging import get_logger

logger = get_logger(__name__)

DAILY_LIMIT_REACHED = "daily_limit_reached"
MIN_GAP_VIOLATION = "min_gap_violation"
PAST_TIME = "past_time"


class SchedulingOrchestrator:
    """Runs the quota check and the candidate strategies for one user.

    Holds only configuration and an injected random source; all user data is
    passed per call, so one instance can serve many users concurrently.
    """

    def __init__(
        self,
        settings: SchedulerSettings | None = None,
        rng: random.Random | None = None,
        window_evaluator: TimeWindowEvaluator | None = None,
        conflict_checker: ConflictChecker | None = None,
        strategies: Sequence[CandidateStrategy] | None = None,
    ) -> None:
        self._settings = settings or SchedulerSettings()
        self._rng = rng or random.Random()
        self._window = window_evaluator or TimeWindowEvaluator()
        self._conflicts = conflict_checker or ConflictChecker(
            self._window, buffer_minutes=self._settings.blocked_buffer_minutes
        )
        if strategies is None:
            strategies = (
                RandomOffsetStrategy(self._settings.max_attempts),
                PreferredSlotStrategy(self._settings.max_attempts, self._settings.slot_jitter_minutes),
                ConstraintRelaxationStrategy(self._settings.max_attempts),
            )
        self._strategies = tuple(strategies)

    @property
    def settings(self) -> SchedulerSettings:
        return self._settings

    def schedule(
        self,
        profile: UserSchedulingProfile,
        state: ScheduleState,
        intervals: Sequence[BlockedInterval],
        now: datetime,
    ) -> SchedulingResult:
        now = as_utc(now)
        snapshot = tuple(intervals)
        effective = state.reset_for(profile.local_today(now))

        if effective.calls_today >= profile.daily_call_limit:
            next_day = self.next_day_first_slot(profile, now)
            logger.info(
                "Daily limit reached, scheduling for next day",
                extra={
                    "calls_today": effective.calls_today,
                    "daily_limit": profile.daily_call_limit,
                    "next_call_time": next_day.isoformat(),
                },
            )
            return SchedulingResult(
                success=True,
                instant=next_day,
                attempts=1,
                constraints=(DAILY_LIMIT_REACHED,),
                strategy="daily_limit",
            )

        context = SearchContext(
            profile=profile,
            state=effective,
            intervals=snapshot,
            now=now,
            rng=self._rng,
            validator=self.validate,
        )
        total_attempts = 0
        constraints: List[str] = []

        for strategy in self._strategies:
            result = strategy.search(context)
            total_attempts += result.attempts
            for reason in result.constraints:
                note_constraint(constraints, reason)

            if result.success:
                logger.info(
                    "Successfully generated call time",
                    extra={
                        "next_call_time": result.instant.isoformat(),
                        "total_attempts": total_attempts,
                        "strategy": result.strategy,
                    },
                )
                return SchedulingResult(
                    success=True,
                    instant=result.instant,
                    attempts=total_attempts,
                    constraints=tuple(constraints),
                    strategy=result.strategy,
                    relaxation=result.relaxation,
                )
            logger.debug(
                "Strategy exhausted its attempt budget",
                extra={"strategy": result.strategy, "attempts": result.attempts},
            )

        logger.warning(
            "Failed to generate call time with all strategies",
            extra={"total_attempts": total_attempts, "constraints": constraints},
        )
        return SchedulingResult(
            success=False,
            attempts=total_attempts,
            constraints=tuple(constraints),
            error="Unable to find valid call time within constraints",
        )

    def validate(
        self,
        instant: datetime,
        profile: UserSchedulingProfile,
        state: ScheduleState,
        intervals: Sequence[BlockedInterval],
        now: datetime,
        min_gap_minutes: Optional[float] = None,
    ) -> ValidationResult:
        """Check one instant against every constraint.

        Order: daily window, active day, minimum gap, blocked intervals, past
        time. The first failing check's reason and suggestion are returned.
        """
        instant = as_utc(instant)
        now = as_utc(now)
        min_gap = timedelta(minutes=profile.min_gap_minutes if min_gap_minutes is None else min_gap_minutes)

        window_result = self._window.evaluate(instant, profile)
        if not window_result.valid:
            return window_result

        if state.last_call_time is not None:
            last_call = as_utc(state.last_call_time)
            if instant - last_call < min_gap:
                return ValidationResult.rejected(MIN_GAP_VIOLATION, last_call + min_gap)

        conflict = self._conflicts.evaluate(instant, intervals, profile)
        if conflict.blocked:
            return ValidationResult.rejected(conflict.reason, conflict.escape)

        if instant <= now:
            return ValidationResult.rejected(PAST_TIME, now + min_gap)

        return ValidationResult.accepted()

    def next_day_first_slot(self, profile: UserSchedulingProfile, now: datetime) -> datetime:
        """Tomorrow's (user-local) morning start plus a random number of minutes."""
        tomorrow = profile.local_today(now) + timedelta(days=1)
        jitter = self._rng.randrange(self._settings.next_day_jitter_minutes)
        return self._window.morning_start_on(tomorrow, profile) + timedelta(minutes=jitter)
