from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from spontaneous_connect.scheduling.models import (
    CallAttemptRecord,
    CallOutcome,
    RecordedAttempt,
    ScheduleState,
    ScheduleStatePatch,
    SchedulingResult,
    UserSchedulingProfile,
    ValidationResult,
    as_utc,
)
from spontaneous_connect.scheduling.orchestrator import SchedulingOrchestrator
from spontaneous_connect.scheduling.repository import ScheduleStore
from spontaneous_connect.shared.exceptions import ConcurrentModification, NoValidSlot
from spontaneous_connect.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ScheduleStateManager:
    """Read-compute-write cycle over one user's schedule state.

    Every write is conditioned on the version token read at the start of the
    operation; a mismatch raises ``ConcurrentModification`` and nothing is
    written. The manager keeps no per-user state of its own.
    """

    def __init__(
        self,
        store: ScheduleStore,
        orchestrator: SchedulingOrchestrator,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._clock = clock

    def _now(self) -> datetime:
        return as_utc(self._clock())

    async def propose_and_commit(self, user_id: UUID) -> SchedulingResult:
        """Generate the next call time and store it as ``next_call_due``.

        Raises:
            NoValidSlot: every strategy exhausted its budget; nothing written.
            ConcurrentModification: the state changed since it was read.
        """
        now = self._now()
        profile = await self._store.load_profile(user_id)
        state = await self._store.load_schedule_state(user_id)
        intervals = tuple(await self._store.load_active_blocked_intervals(user_id))

        result = self._orchestrator.schedule(profile, state, intervals, now)
        if not result.success or result.instant is None:
            logger.warning(
                "Call generation failed",
                extra={
                    "user_id": str(user_id),
                    "attempts": result.attempts,
                    "constraints": list(result.constraints),
                },
            )
            raise NoValidSlot(
                result.error or "No valid call slot found",
                details={"attempts": result.attempts, "constraints": list(result.constraints)},
            )

        patch = self._with_daily_reset(
            ScheduleStatePatch(next_call_due=result.instant, last_generated=now),
            state,
            profile,
            now,
        )
        committed = await self._commit(user_id, patch, state, "propose_and_commit")
        logger.info(
            "Call generation successful",
            extra={
                "user_id": str(user_id),
                "next_call_time": result.instant.isoformat(),
                "attempts": result.attempts,
                "constraints": list(result.constraints),
                "strategy": result.strategy,
                "version_token": committed.version_token,
            },
        )
        return replace(result, state=committed)

    async def record_attempt(
        self,
        user_id: UUID,
        outcome: CallOutcome,
        platform: Optional[str] = None,
        rating: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> RecordedAttempt:
        """Consume ``next_call_due`` and note the attempt.

        Only ``CallOutcome.CALLED`` counts against the daily quota. The history
        record is written by the same conditional write that clears the slot.
        """
        outcome = CallOutcome(outcome)
        now = self._now()
        profile = await self._store.load_profile(user_id)
        state = await self._store.load_schedule_state(user_id)
        today = profile.local_today(now)
        effective = state.reset_for(today)

        calls_today = effective.calls_today + (1 if outcome is CallOutcome.CALLED else 0)
        patch = ScheduleStatePatch(
            next_call_due=None,
            last_call_time=now,
            calls_today=calls_today,
        )
        if state.is_stale(today):
            patch = replace(patch, daily_reset_date=today)

        record = self._build_record(state, outcome, now, platform, rating, notes)
        committed = await self._commit(user_id, patch, state, "record_attempt", record)
        logger.info(
            "Call attempt marked",
            extra={
                "user_id": str(user_id),
                "outcome": outcome.value,
                "platform": platform,
                "calls_today": committed.calls_today,
                "version_token": committed.version_token,
            },
        )
        return RecordedAttempt(state=committed, record=record)

    async def current_state(self, user_id: UUID) -> ScheduleState:
        """Stored state with the daily counter as it applies today; read-only."""
        profile = await self._store.load_profile(user_id)
        state = await self._store.load_schedule_state(user_id)
        return state.reset_for(profile.local_today(self._now()))

    async def validate_instant(self, user_id: UUID, instant: datetime) -> ValidationResult:
        """Check an ad-hoc instant against the user's constraints without writing."""
        now = self._now()
        profile = await self._store.load_profile(user_id)
        state = await self._store.load_schedule_state(user_id)
        intervals = tuple(await self._store.load_active_blocked_intervals(user_id))
        return self._orchestrator.validate(
            instant,
            profile,
            state.reset_for(profile.local_today(now)),
            intervals,
            now,
        )

    async def reschedule(self, user_id: UUID, delay_minutes: float) -> SchedulingResult:
        """Move the next call to ``now + delay_minutes``, or to the closest valid suggestion.

        Raises:
            NoValidSlot: neither the requested time nor its suggestion is valid.
            ConcurrentModification: the state changed since it was read.
        """
        now = self._now()
        profile = await self._store.load_profile(user_id)
        state = await self._store.load_schedule_state(user_id)
        intervals = tuple(await self._store.load_active_blocked_intervals(user_id))
        effective = state.reset_for(profile.local_today(now))

        requested = now + timedelta(minutes=delay_minutes)
        validation = self._orchestrator.validate(requested, profile, effective, intervals, now)
        chosen = requested
        constraints: tuple[str, ...] = ()
        if not validation.valid:
            suggestion = validation.suggestion
            if suggestion is None or not self._orchestrator.validate(
                suggestion, profile, effective, intervals, now
            ).valid:
                raise NoValidSlot(
                    f"Cannot reschedule to requested time: {validation.reason}",
                    details={"attempts": 1, "constraints": [validation.reason]},
                )
            chosen = suggestion
            constraints = (validation.reason,)

        patch = self._with_daily_reset(
            ScheduleStatePatch(next_call_due=chosen, last_generated=now),
            state,
            profile,
            now,
        )
        committed = await self._commit(user_id, patch, state, "reschedule")
        logger.info(
            "Call rescheduled",
            extra={
                "user_id": str(user_id),
                "delay_minutes": delay_minutes,
                "requested_time": requested.isoformat(),
                "next_call_time": chosen.isoformat(),
                "reason": validation.reason,
            },
        )
        return SchedulingResult(
            success=True,
            instant=chosen,
            attempts=1,
            constraints=constraints,
            strategy="reschedule",
            state=committed,
        )

    async def _commit(
        self,
        user_id: UUID,
        patch: ScheduleStatePatch,
        read_state: ScheduleState,
        operation: str,
        record: Optional[CallAttemptRecord] = None,
    ) -> ScheduleState:
        committed = await self._store.conditional_write(user_id, patch, read_state.version_token, record)
        if committed is None:
            logger.warning(
                "Schedule was modified concurrently",
                extra={
                    "user_id": str(user_id),
                    "operation": operation,
                    "expected_version": read_state.version_token,
                },
            )
            raise ConcurrentModification(
                "Schedule was modified by another process. Please refresh and try again.",
                details={"user_id": str(user_id), "expected_version": read_state.version_token},
            )
        return committed

    @staticmethod
    def _with_daily_reset(
        patch: ScheduleStatePatch,
        state: ScheduleState,
        profile: UserSchedulingProfile,
        now: datetime,
    ) -> ScheduleStatePatch:
        today = profile.local_today(now)
        if not state.is_stale(today):
            return patch
        return replace(patch, calls_today=0, daily_reset_date=today)

    @staticmethod
    def _build_record(
        state: ScheduleState,
        outcome: CallOutcome,
        now: datetime,
        platform: Optional[str],
        rating: Optional[int],
        notes: Optional[str],
    ) -> CallAttemptRecord:
        scheduled = as_utc(state.next_call_due) if state.next_call_due else now
        metadata = {
            "generated_at": state.last_generated.isoformat() if state.last_generated else None,
            "attempt_delay_minutes": round((now - scheduled).total_seconds() / 60),
        }
        return CallAttemptRecord(
            scheduled_time=scheduled,
            actual_time=now,
            outcome=outcome,
            platform=platform,
            rating=rating,
            notes=notes,
            metadata=metadata,
        )


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
) -> T:
    """Re-run a whole read-compute-write ``operation`` after version conflicts.

    Only ``ConcurrentModification`` is retried; the last one is re-raised once
    ``attempts`` runs have failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    attempt = 1
    while True:
        try:
            return await operation()
        except ConcurrentModification:
            if attempt >= attempts:
                raise
            logger.info("Retrying after version conflict", extra={"attempt": attempt})
            attempt += 1
