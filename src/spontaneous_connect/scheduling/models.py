from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from spontaneous_connect.config import Settings
from spontaneous_connect.shared.exceptions import ConfigurationError


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Weekday(str, Enum):
    """Weekday tokens as stored on profiles and blocked intervals."""

    MON = "Mon"
    TUE = "Tue"
    WED = "Wed"
    THU = "Thu"
    FRI = "Fri"
    SAT = "Sat"
    SUN = "Sun"

    @classmethod
    def of(cls, value: Union[date, datetime]) -> "Weekday":
        return _WEEK[value.weekday()]

    @classmethod
    def parse_many(cls, raw: Union[str, Iterable[Union[str, "Weekday"]], None]) -> frozenset["Weekday"]:
        """Parse ``"Mon,Tue"`` or an iterable of tokens into a set of weekdays."""
        if raw is None:
            return frozenset()
        tokens = raw.split(",") if isinstance(raw, str) else raw
        days = set()
        for token in tokens:
            if isinstance(token, Weekday):
                days.add(token)
                continue
            token = token.strip()
            if not token:
                continue
            try:
                days.add(cls(token[:1].upper() + token[1:3].lower()))
            except ValueError as exc:
                raise ConfigurationError(f"Unknown weekday token: {token!r}") from exc
        return frozenset(days)

    @classmethod
    def to_csv(cls, days: Iterable["Weekday"]) -> str:
        selected = set(days)
        return ",".join(day.value for day in _WEEK if day in selected)


_WEEK = (
    Weekday.MON,
    Weekday.TUE,
    Weekday.WED,
    Weekday.THU,
    Weekday.FRI,
    Weekday.SAT,
    Weekday.SUN,
)
WORKING_DAYS = frozenset(_WEEK[:5])
WEEKEND_DAYS = frozenset(_WEEK[5:])


class RepeatKind(str, Enum):
    """Recurrence of a blocked interval."""

    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    CUSTOM = "custom"
    ONCE = "once"


class CallOutcome(str, Enum):
    """Outcome recorded against a proposed call."""

    CALLED = "called"
    SKIPPED = "skipped"
    LATER = "later"
    FAILED = "failed"
    SUGGESTED = "suggested"


@dataclass(frozen=True)
class DailyWindow:
    """Local time-of-day range ``[morning_start, evening_end)``."""

    morning_start: time
    evening_end: time

    def __post_init__(self) -> None:
        if not self.morning_start < self.evening_end:
            raise ConfigurationError(
                "morning_start must be earlier than evening_end",
                details={
                    "morning_start": self.morning_start.isoformat(),
                    "evening_end": self.evening_end.isoformat(),
                },
            )

    def contains(self, time_of_day: time) -> bool:
        return self.morning_start <= time_of_day < self.evening_end


@dataclass(frozen=True)
class UserSchedulingProfile:
    """Read-only scheduling preferences owned by the profile subsystem."""

    timezone: str
    active_days: frozenset[Weekday]
    daily_window: DailyWindow
    daily_call_limit: int = 3
    min_gap_minutes: float = 45
    max_gap_minutes: float = 360

    def __post_init__(self) -> None:
        object.__setattr__(self, "active_days", Weekday.parse_many(self.active_days))
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown timezone: {self.timezone!r}") from exc
        if self.daily_call_limit <= 0:
            raise ConfigurationError("daily_call_limit must be > 0")
        if self.min_gap_minutes <= 0:
            raise ConfigurationError("min_gap_minutes must be > 0")
        if self.max_gap_minutes < self.min_gap_minutes:
            raise ConfigurationError("max_gap_minutes must be >= min_gap_minutes")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_today(self, now: datetime) -> date:
        return as_utc(now).astimezone(self.tz).date()


@dataclass(frozen=True)
class BlockedInterval:
    """Recurring local time-of-day range during which calls are not placed."""

    id: Union[UUID, str]
    name: str
    start_time: time
    end_time: time
    repeat_kind: RepeatKind = RepeatKind.DAILY
    days_of_week: frozenset[Weekday] = frozenset()
    priority: int = 0
    active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "repeat_kind", RepeatKind(self.repeat_kind))
        object.__setattr__(self, "days_of_week", Weekday.parse_many(self.days_of_week))
        if not self.start_time < self.end_time:
            raise ConfigurationError(
                f"Blocked interval {self.name!r} must start before it ends",
                details={"interval_id": str(self.id)},
            )
        if self.repeat_kind is RepeatKind.CUSTOM and not self.days_of_week:
            raise ConfigurationError(
                f"Blocked interval {self.name!r} uses a custom repeat without days",
                details={"interval_id": str(self.id)},
            )
        if not 0 <= self.priority <= 10:
            raise ConfigurationError(
                f"Blocked interval {self.name!r} priority must be within 0..10",
                details={"interval_id": str(self.id)},
            )


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ScheduleStatePatch:
    """Fields to change in one conditional write; ``UNSET`` leaves a field alone."""

    next_call_due: Any = UNSET
    last_call_time: Any = UNSET
    calls_today: Any = UNSET
    daily_reset_date: Any = UNSET
    last_generated: Any = UNSET

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


@dataclass(frozen=True)
class ScheduleState:
    """Per-user mutable scheduling state guarded by ``version_token``."""

    daily_reset_date: date
    calls_today: int = 0
    next_call_due: Optional[datetime] = None
    last_call_time: Optional[datetime] = None
    last_generated: Optional[datetime] = None
    version_token: int = 0

    @classmethod
    def fresh(cls, today: date = date.min) -> "ScheduleState":
        """State of a user with no stored row; version 0 means "insert on write".

        The default reset date is always stale, so the first write also
        stores the user's local reset date.
        """
        return cls(daily_reset_date=today)

    def is_stale(self, today: date) -> bool:
        return self.daily_reset_date != today

    def reset_for(self, today: date) -> "ScheduleState":
        """Zero the daily counter when ``daily_reset_date`` is not ``today``."""
        if not self.is_stale(today):
            return self
        return replace(self, calls_today=0, daily_reset_date=today)

    def apply(self, patch: ScheduleStatePatch) -> "ScheduleState":
        """Return the state a successful write of ``patch`` produces."""
        return replace(self, **patch.changes(), version_token=self.version_token + 1)


@dataclass(frozen=True)
class CallAttemptRecord:
    """Append-only history entry, written together with the state change it records."""

    scheduled_time: datetime
    actual_time: datetime
    outcome: CallOutcome
    platform: Optional[str] = None
    rating: Optional[int] = None
    notes: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    suggestion: Optional[datetime] = None

    @classmethod
    def accepted(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def rejected(cls, reason: str, suggestion: Optional[datetime] = None) -> "ValidationResult":
        return cls(valid=False, reason=reason, suggestion=suggestion)


@dataclass(frozen=True)
class RelaxationApplied:
    """Which loosening produced a non-ideal slot."""

    description: str
    min_gap_minutes: float
    ignored_interval_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of one candidate strategy, successful or not."""

    strategy: str
    instant: Optional[datetime]
    attempts: int
    constraints: Tuple[str, ...] = ()
    relaxation: Optional[RelaxationApplied] = None

    @property
    def success(self) -> bool:
        return self.instant is not None


@dataclass(frozen=True)
class SchedulingResult:
    """Summary returned by the orchestrator and the state manager."""

    success: bool
    instant: Optional[datetime] = None
    attempts: int = 0
    constraints: Tuple[str, ...] = ()
    strategy: Optional[str] = None
    relaxation: Optional[RelaxationApplied] = None
    error: Optional[str] = None
    state: Optional[ScheduleState] = None


@dataclass(frozen=True)
class RecordedAttempt:
    """Updated state after ``record_attempt`` plus the history entry to append."""

    state: ScheduleState
    record: CallAttemptRecord


@dataclass(frozen=True)
class SchedulerSettings:
    """Runtime knobs for the scheduling engine."""

    max_attempts: int = 50
    blocked_buffer_minutes: int = 15
    slot_jitter_minutes: int = 30
    next_day_jitter_minutes: int = 60
    min_gap_minutes: int = 45
    max_gap_minutes: int = 360
    default_daily_call_limit: int = 3

    def __post_init__(self) -> None:
        if self.max_attempts < 3:
            raise ValueError("max_attempts must be >= 3")
        if self.blocked_buffer_minutes < 0:
            raise ValueError("blocked_buffer_minutes must be >= 0")
        if self.slot_jitter_minutes < 0:
            raise ValueError("slot_jitter_minutes must be >= 0")
        if self.next_day_jitter_minutes < 1:
            raise ValueError("next_day_jitter_minutes must be >= 1")
        if not 0 < self.min_gap_minutes <= self.max_gap_minutes:
            raise ValueError("gap bounds must satisfy 0 < min_gap_minutes <= max_gap_minutes")
        if self.default_daily_call_limit < 1:
            raise ValueError("default_daily_call_limit must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerSettings":
        return cls(
            max_attempts=settings.scheduler_max_attempts,
            blocked_buffer_minutes=settings.scheduler_blocked_buffer_minutes,
            slot_jitter_minutes=settings.scheduler_slot_jitter_minutes,
            next_day_jitter_minutes=settings.scheduler_next_day_jitter_minutes,
            min_gap_minutes=settings.scheduler_min_gap_minutes,
            max_gap_minutes=settings.scheduler_max_gap_minutes,
            default_daily_call_limit=settings.default_daily_call_limit,
        )
