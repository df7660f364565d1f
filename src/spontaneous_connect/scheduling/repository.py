"""
Persistence collaborators for the schedule state manager.

Both stores expose the same compare-and-swap primitive: ``conditional_write``
succeeds only while the stored version equals the expected one, and returns
``None`` otherwise. Version 0 stands for "no row yet".
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Protocol, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spontaneous_connect.scheduling.models import (
    BlockedInterval,
    CallAttemptRecord,
    DailyWindow,
    ScheduleState,
    SchedulerSettings,
    ScheduleStatePatch,
    UserSchedulingProfile,
    Weekday,
    as_utc,
)
from spontaneous_connect.scheduling.persistence_models import (
    BlockedTimeRow,
    CallHistoryRow,
    ScheduleHelperRow,
    UserRow,
)
from spontaneous_connect.shared.exceptions import ConfigurationError, PersistenceUnavailable
from spontaneous_connect.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


class ScheduleStore(Protocol):
    """Protocol for the storage behind the schedule state manager."""

    async def load_profile(self, user_id: UUID) -> UserSchedulingProfile:
        """Load the user's scheduling profile."""
        ...

    async def load_schedule_state(self, user_id: UUID) -> ScheduleState:
        """Load the current state, including its version token."""
        ...

    async def load_active_blocked_intervals(self, user_id: UUID) -> list[BlockedInterval]:
        """Load active blocked intervals, highest priority first."""
        ...

    async def conditional_write(
        self,
        user_id: UUID,
        patch: ScheduleStatePatch,
        expected_version: int,
        record: CallAttemptRecord | None = None,
    ) -> ScheduleState | None:
        """Apply ``patch`` if the stored version is ``expected_version``.

        When ``record`` is given it is appended to the call history in the
        same write, and only if the version check passes.
        """
        ...

    async def append_call_attempt(self, user_id: UUID, record: CallAttemptRecord) -> None:
        """Append a call history entry."""
        ...


class InMemoryScheduleStore:
    """Dictionary-backed store for embedding and tests.

    Compare and set run without an ``await`` between them, so a write is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._profiles: dict[UUID, UserSchedulingProfile] = {}
        self._intervals: dict[UUID, list[BlockedInterval]] = {}
        self._states: dict[UUID, ScheduleState] = {}
        self.history: dict[UUID, list[CallAttemptRecord]] = defaultdict(list)

    def put_profile(self, user_id: UUID, profile: UserSchedulingProfile) -> None:
        self._profiles[user_id] = profile

    def put_intervals(self, user_id: UUID, intervals: Sequence[BlockedInterval]) -> None:
        self._intervals[user_id] = list(intervals)

    def put_state(self, user_id: UUID, state: ScheduleState) -> None:
        self._states[user_id] = state

    async def load_profile(self, user_id: UUID) -> UserSchedulingProfile:
        try:
            return self._profiles[user_id]
        except KeyError:
            raise ConfigurationError(
                f"No scheduling profile for user {user_id}",
                details={"user_id": str(user_id)},
            ) from None

    async def load_schedule_state(self, user_id: UUID) -> ScheduleState:
        return self._states.get(user_id) or ScheduleState.fresh()

    async def load_active_blocked_intervals(self, user_id: UUID) -> list[BlockedInterval]:
        intervals = [i for i in self._intervals.get(user_id, []) if i.active]
        return sorted(intervals, key=lambda i: i.priority, reverse=True)

    async def conditional_write(
        self,
        user_id: UUID,
        patch: ScheduleStatePatch,
        expected_version: int,
        record: CallAttemptRecord | None = None,
    ) -> ScheduleState | None:
        current = self._states.get(user_id)
        current_version = current.version_token if current else 0
        if current_version != expected_version:
            return None
        updated = (current or ScheduleState.fresh()).apply(patch)
        self._states[user_id] = updated
        if record is not None:
            self.history[user_id].append(record)
        return updated

    async def append_call_attempt(self, user_id: UUID, record: CallAttemptRecord) -> None:
        self.history[user_id].append(record)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; values are always written in UTC.
    return as_utc(value) if value is not None else None


class SqlAlchemyScheduleStore:
    """Async SQLAlchemy store over the schedule_helper/blocked_times/users tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: SchedulerSettings | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """Initialize store.

        Args:
            session_factory: Factory producing async sessions; each operation
                runs in its own session and transaction.
            settings: Source of the gap bounds and default daily limit applied
                to loaded profiles.
            clock: Source of ``updated_at`` timestamps.
        """
        self._session_factory = session_factory
        self._settings = settings or SchedulerSettings()
        self._clock = clock

    @contextmanager
    def _translate_errors(self, operation: str, user_id: UUID) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            log_with_context(
                logger,
                logging.ERROR,
                "Schedule store operation failed",
                operation=operation,
                user_id=str(user_id),
                error=str(exc),
            )
            raise PersistenceUnavailable(
                f"Schedule store unavailable during {operation}",
                details={"operation": operation, "user_id": str(user_id)},
            ) from exc

    async def load_profile(self, user_id: UUID) -> UserSchedulingProfile:
        with self._translate_errors("load_profile", user_id):
            async with self._session_factory() as session:
                row = await session.get(UserRow, user_id)
        if row is None:
            raise ConfigurationError(
                f"No scheduling profile for user {user_id}",
                details={"user_id": str(user_id)},
            )
        return UserSchedulingProfile(
            timezone=row.timezone,
            active_days=Weekday.parse_many(row.active_days),
            daily_window=DailyWindow(row.morning_start, row.evening_end),
            daily_call_limit=row.daily_call_limit or self._settings.default_daily_call_limit,
            min_gap_minutes=self._settings.min_gap_minutes,
            max_gap_minutes=self._settings.max_gap_minutes,
        )

    async def load_schedule_state(self, user_id: UUID) -> ScheduleState:
        with self._translate_errors("load_schedule_state", user_id):
            async with self._session_factory() as session:
                row = await self._get_helper_row(session, user_id)
        if row is None:
            return ScheduleState.fresh()
        return self._to_state(row)

    async def load_active_blocked_intervals(self, user_id: UUID) -> list[BlockedInterval]:
        stmt = (
            select(BlockedTimeRow)
            .where(BlockedTimeRow.user_id == user_id)
            .where(BlockedTimeRow.is_active.is_(True))
            .order_by(BlockedTimeRow.priority.desc(), BlockedTimeRow.start_time)
        )
        with self._translate_errors("load_active_blocked_intervals", user_id):
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [
            BlockedInterval(
                id=row.id,
                name=row.block_name,
                start_time=row.start_time,
                end_time=row.end_time,
                repeat_kind=row.repeat_type,
                days_of_week=Weekday.parse_many(row.days_of_week),
                priority=row.priority,
                active=row.is_active,
            )
            for row in rows
        ]

    async def conditional_write(
        self,
        user_id: UUID,
        patch: ScheduleStatePatch,
        expected_version: int,
        record: CallAttemptRecord | None = None,
    ) -> ScheduleState | None:
        values = self._column_values(patch)
        now = as_utc(self._clock())

        with self._translate_errors("conditional_write", user_id):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        if expected_version == 0:
                            values.setdefault("daily_reset_date", now.date())
                            session.add(
                                ScheduleHelperRow(
                                    user_id=user_id,
                                    lock_version=1,
                                    updated_at=now,
                                    **values,
                                )
                            )
                        else:
                            result = await session.execute(
                                update(ScheduleHelperRow)
                                .where(ScheduleHelperRow.user_id == user_id)
                                .where(ScheduleHelperRow.lock_version == expected_version)
                                .values(**values, updated_at=now, lock_version=expected_version + 1)
                                .execution_options(synchronize_session=False)
                            )
                            if result.rowcount == 0:
                                return None
                        if record is not None:
                            session.add(self._history_row(user_id, record))
                        await session.flush()
                        # Read back inside the write transaction.
                        row = await self._get_helper_row(session, user_id)
                        state = self._to_state(row)
                except IntegrityError:
                    # Another writer inserted the row first.
                    return None
        return state

    async def append_call_attempt(self, user_id: UUID, record: CallAttemptRecord) -> None:
        with self._translate_errors("append_call_attempt", user_id):
            async with self._session_factory() as session, session.begin():
                session.add(self._history_row(user_id, record))

    @staticmethod
    def _history_row(user_id: UUID, record: CallAttemptRecord) -> CallHistoryRow:
        return CallHistoryRow(
            user_id=user_id,
            scheduled_time=as_utc(record.scheduled_time),
            actual_time=as_utc(record.actual_time),
            platform_used=record.platform,
            status=record.outcome,
            rating=record.rating,
            notes=record.notes,
            attempt_metadata=dict(record.metadata),
        )

    @staticmethod
    async def _get_helper_row(session: AsyncSession, user_id: UUID) -> ScheduleHelperRow | None:
        stmt = (
            select(ScheduleHelperRow)
            .where(ScheduleHelperRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    @staticmethod
    def _column_values(patch: ScheduleStatePatch) -> dict[str, Any]:
        values = patch.changes()
        for key, value in values.items():
            if isinstance(value, datetime):
                values[key] = as_utc(value)
        return values

    @staticmethod
    def _to_state(row: ScheduleHelperRow) -> ScheduleState:
        return ScheduleState(
            daily_reset_date=row.daily_reset_date,
            calls_today=row.calls_today,
            next_call_due=_aware(row.next_call_due),
            last_call_time=_aware(row.last_call_time),
            last_generated=_aware(row.last_generated),
            version_token=row.lock_version,
        )
