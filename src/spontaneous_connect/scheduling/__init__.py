"""
Scheduling core: time windows, blocked intervals, candidate search and
optimistic-concurrency state management.
"""

from spontaneous_connect.scheduling.conflicts import ConflictChecker, ConflictResult
from spontaneous_connect.scheduling.models import (
    BlockedInterval,
    CallAttemptRecord,
    CallOutcome,
    DailyWindow,
    RepeatKind,
    ScheduleState,
    ScheduleStatePatch,
    SchedulerSettings,
    SchedulingResult,
    UserSchedulingProfile,
    ValidationResult,
    Weekday,
)
from spontaneous_connect.scheduling.orchestrator import SchedulingOrchestrator
from spontaneous_connect.scheduling.repository import (
    InMemoryScheduleStore,
    ScheduleStore,
    SqlAlchemyScheduleStore,
)
from spontaneous_connect.scheduling.service import ScheduleStateManager, retry_on_conflict
from spontaneous_connect.scheduling.time_window import TimeWindowEvaluator

__all__ = [
    "BlockedInterval",
    "CallAttemptRecord",
    "CallOutcome",
    "ConflictChecker",
    "ConflictResult",
    "DailyWindow",
    "InMemoryScheduleStore",
    "RepeatKind",
    "ScheduleState",
    "ScheduleStateManager",
    "ScheduleStatePatch",
    "ScheduleStore",
    "SchedulerSettings",
    "SchedulingOrchestrator",
    "SchedulingResult",
    "SqlAlchemyScheduleStore",
    "TimeWindowEvaluator",
    "UserSchedulingProfile",
    "ValidationResult",
    "Weekday",
    "retry_on_conflict",
]
