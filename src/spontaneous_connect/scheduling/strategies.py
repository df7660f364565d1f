"""
Candidate generation strategies.

Each strategy proposes instants and hands them to the search context for
validation. Strategies never loop unboundedly: every one of them stops after
its attempt budget and reports the attempts used and the rejection reasons it
saw on the way.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from spontaneous_connect.scheduling.models import (
    BlockedInterval,
    DailyWindow,
    RelaxationApplied,
    ScheduleState,
    StrategyResult,
    UserSchedulingProfile,
    ValidationResult,
    as_utc,
)
from spontaneous_connect.shared.logging import get_logger

logger = get_logger(__name__)

PREFERRED_HOURS = (10, 11, 14, 16, 19, 20)

Validator = Callable[..., ValidationResult]


def note_constraint(constraints: List[str], reason: Optional[str]) -> None:
    if reason and reason not in constraints:
        constraints.append(reason)


@dataclass(frozen=True)
class SearchContext:
    """Everything a strategy needs for one scheduling run."""

    profile: UserSchedulingProfile
    state: ScheduleState
    intervals: Tuple[BlockedInterval, ...]
    now: datetime
    rng: random.Random
    validator: Validator

    def try_candidate(
        self,
        candidate: datetime,
        min_gap_minutes: Optional[float] = None,
        intervals: Optional[Sequence[BlockedInterval]] = None,
    ) -> Tuple[Optional[datetime], Optional[str]]:
        """Validate ``candidate``; when rejected, re-validate its suggestion once.

        Returns the accepted instant (the candidate or its suggestion, or
        ``None``) and the candidate's rejection reason.
        """
        kwargs = dict(
            profile=self.profile,
            state=self.state,
            intervals=self.intervals if intervals is None else intervals,
            now=self.now,
            min_gap_minutes=min_gap_minutes,
        )
        validation = self.validator(candidate, **kwargs)
        if validation.valid:
            return candidate, None
        if validation.suggestion is not None and self.validator(validation.suggestion, **kwargs).valid:
            return validation.suggestion, validation.reason
        return None, validation.reason


class CandidateStrategy(Protocol):
    name: str

    def search(self, context: SearchContext) -> StrategyResult: ...


def random_offset(now: datetime, rng: random.Random, min_gap_minutes: float, max_gap_minutes: float) -> datetime:
    """``now`` plus an offset drawn uniformly from ``[min_gap, max_gap)`` minutes."""
    minutes = min_gap_minutes + rng.random() * max(0.0, max_gap_minutes - min_gap_minutes)
    return as_utc(now) + timedelta(minutes=minutes)


def score_time_slot(slot: time) -> int:
    score = 0
    if 10 <= slot.hour <= 16:
        score += 3
    if 19 <= slot.hour <= 21:
        score += 4
    if slot.minute in (0, 30):
        score += 1
    if slot.hour < 9 or slot.hour > 22:
        score -= 2
    return score


def preferred_time_slots(window: DailyWindow, rng: random.Random) -> List[time]:
    """Preferred hours inside ``window`` with a random minute, best score first."""
    last_hour = window.evening_end.hour + (1 if window.evening_end.minute else 0)
    slots = [
        time(hour, rng.randrange(60))
        for hour in PREFERRED_HOURS
        if window.morning_start.hour <= hour < last_hour
    ]
    return sorted(slots, key=score_time_slot, reverse=True)


class RandomOffsetStrategy:
    """Uniform random offsets between the profile's gap bounds."""

    name = "random_offset"

    def __init__(self, max_attempts: int = 50) -> None:
        self._max_attempts = max_attempts

    def search(self, context: SearchContext) -> StrategyResult:
        constraints: List[str] = []
        profile = context.profile
        for attempt in range(1, self._max_attempts + 1):
            candidate = random_offset(context.now, context.rng, profile.min_gap_minutes, profile.max_gap_minutes)
            accepted, reason = context.try_candidate(candidate)
            note_constraint(constraints, reason)
            if accepted is not None:
                return StrategyResult(self.name, accepted, attempt, tuple(constraints))
        return StrategyResult(self.name, None, self._max_attempts, tuple(constraints))


class PreferredSlotStrategy:
    """Next occurrence of well-scored hours of the day, with jitter."""

    name = "preferred_slot"

    def __init__(self, max_attempts: int = 50, jitter_minutes: int = 30) -> None:
        self._max_attempts = max_attempts
        self._jitter_minutes = jitter_minutes

    def next_occurrence(self, slot: time, context: SearchContext) -> datetime:
        tz = context.profile.tz
        local_now = as_utc(context.now).astimezone(tz)
        proposed = datetime.combine(local_now.date(), slot, tzinfo=tz)
        if proposed <= local_now:
            proposed += timedelta(days=1)
        jitter = (context.rng.random() - 0.5) * self._jitter_minutes
        return as_utc(proposed + timedelta(minutes=jitter))

    def search(self, context: SearchContext) -> StrategyResult:
        constraints: List[str] = []
        slots = preferred_time_slots(context.profile.daily_window, context.rng)[: self._max_attempts]
        for attempt, slot in enumerate(slots, start=1):
            accepted, reason = context.try_candidate(self.next_occurrence(slot, context))
            note_constraint(constraints, reason)
            if accepted is not None:
                return StrategyResult(self.name, accepted, attempt, tuple(constraints))
        return StrategyResult(self.name, None, len(slots), tuple(constraints))


@dataclass(frozen=True)
class RelaxationStep:
    description: str
    gap_factor: float
    ignore_low_priority_blocks: bool = False


RELAXATION_STEPS = (
    RelaxationStep("reduced_min_gap", 0.75),
    RelaxationStep("minimal_gap", 0.5),
    RelaxationStep("ignore_low_priority_blocks", 1.0, ignore_low_priority_blocks=True),
)


class ConstraintRelaxationStrategy:
    """Random search under progressively looser gap and blocking rules."""

    name = "constraint_relaxation"

    def __init__(self, max_attempts: int = 50, steps: Sequence[RelaxationStep] = RELAXATION_STEPS) -> None:
        self._steps = tuple(steps)
        self._attempts_per_step = max(1, max_attempts // len(self._steps))

    def search(self, context: SearchContext) -> StrategyResult:
        constraints: List[str] = []
        profile = context.profile
        total = 0

        for step in self._steps:
            min_gap = profile.min_gap_minutes * step.gap_factor
            intervals = context.intervals
            ignored: Tuple[str, ...] = ()
            if step.ignore_low_priority_blocks:
                intervals = tuple(i for i in context.intervals if i.priority > 0)
                ignored = tuple(str(i.id) for i in context.intervals if i.priority <= 0 and i.active)

            for _ in range(self._attempts_per_step):
                total += 1
                candidate = random_offset(context.now, context.rng, min_gap, profile.max_gap_minutes)
                accepted, reason = context.try_candidate(candidate, min_gap_minutes=min_gap, intervals=intervals)
                note_constraint(constraints, reason)
                if accepted is None:
                    continue

                logger.info(
                    "Found time with relaxed constraints",
                    extra={
                        "relaxation": step.description,
                        "nominal_min_gap": profile.min_gap_minutes,
                        "relaxed_min_gap": min_gap,
                        "blocks_ignored": len(ignored),
                    },
                )
                note_constraint(constraints, step.description)
                return StrategyResult(
                    self.name,
                    accepted,
                    total,
                    tuple(constraints),
                    RelaxationApplied(step.description, min_gap, ignored),
                )

        return StrategyResult(self.name, None, total, tuple(constraints))
