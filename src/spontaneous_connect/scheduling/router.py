"""
API router exposing the scheduling core.

Authentication is out of scope here; the user is addressed by path id.
"""

from datetime import datetime, timezone
from typing import Annotated, Callable
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spontaneous_connect.config import Settings, get_settings
from spontaneous_connect.scheduling.models import SchedulerSettings
from spontaneous_connect.scheduling.orchestrator import SchedulingOrchestrator
from spontaneous_connect.scheduling.repository import ScheduleStore, SqlAlchemyScheduleStore
from spontaneous_connect.scheduling.schemas import (
    CallAttemptResponse,
    RecordAttemptRequest,
    RecordAttemptResponse,
    RescheduleRequest,
    ScheduleStateResponse,
    SchedulingResponse,
    ValidateInstantRequest,
    ValidateInstantResponse,
)
from spontaneous_connect.scheduling.service import ScheduleStateManager, retry_on_conflict
from spontaneous_connect.shared.database import get_session_factory
from spontaneous_connect.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/users/{user_id}/schedule", tags=["scheduling"])

Clock = Callable[[], datetime]


def get_clock() -> Clock:
    """Dependency for the wall clock."""
    return lambda: datetime.now(timezone.utc)


def get_scheduler_settings(
    settings: Annotated[Settings, Depends(get_settings)],
) -> SchedulerSettings:
    return SchedulerSettings.from_settings(settings)


def get_schedule_store(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    scheduler_settings: Annotated[SchedulerSettings, Depends(get_scheduler_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> ScheduleStore:
    """Dependency for the schedule store."""
    return SqlAlchemyScheduleStore(session_factory, scheduler_settings, clock=clock)


def get_schedule_manager(
    store: Annotated[ScheduleStore, Depends(get_schedule_store)],
    scheduler_settings: Annotated[SchedulerSettings, Depends(get_scheduler_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> ScheduleStateManager:
    """Dependency for the schedule state manager."""
    return ScheduleStateManager(store, SchedulingOrchestrator(scheduler_settings), clock=clock)


@router.get(
    "",
    response_model=ScheduleStateResponse,
    summary="Get the current schedule state",
)
async def get_schedule(
    user_id: UUID,
    manager: Annotated[ScheduleStateManager, Depends(get_schedule_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> ScheduleStateResponse:
    state = await manager.current_state(user_id)
    return ScheduleStateResponse.from_state(state, clock(), settings.call_time_tolerance_minutes)


@router.post(
    "/next",
    response_model=SchedulingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate and commit the next call time",
)
async def propose_next_call(
    user_id: UUID,
    manager: Annotated[ScheduleStateManager, Depends(get_schedule_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SchedulingResponse:
    result = await retry_on_conflict(
        lambda: manager.propose_and_commit(user_id),
        attempts=settings.scheduler_commit_retry_attempts,
    )
    return SchedulingResponse.from_result(result)


@router.post(
    "/attempts",
    response_model=RecordAttemptResponse,
    summary="Record the outcome of the prompted call",
)
async def record_attempt(
    user_id: UUID,
    payload: RecordAttemptRequest,
    manager: Annotated[ScheduleStateManager, Depends(get_schedule_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> RecordAttemptResponse:
    recorded = await retry_on_conflict(
        lambda: manager.record_attempt(
            user_id,
            payload.outcome,
            platform=payload.platform,
            rating=payload.rating,
            notes=payload.notes,
        ),
        attempts=settings.scheduler_commit_retry_attempts,
    )

    logger.info(
        "Call attempt recorded",
        extra={
            "user_id": str(user_id),
            "outcome": payload.outcome.value,
            "platform": payload.platform,
        },
    )
    return RecordAttemptResponse(
        state=ScheduleStateResponse.from_state(recorded.state, clock(), settings.call_time_tolerance_minutes),
        record=CallAttemptResponse.from_record(recorded.record),
    )


@router.post(
    "/validate",
    response_model=ValidateInstantResponse,
    summary="Check whether a time is acceptable without changing the schedule",
)
async def validate_instant(
    user_id: UUID,
    payload: ValidateInstantRequest,
    manager: Annotated[ScheduleStateManager, Depends(get_schedule_manager)],
) -> ValidateInstantResponse:
    validation = await manager.validate_instant(user_id, payload.instant)
    return ValidateInstantResponse.from_validation(validation)


@router.post(
    "/reschedule",
    response_model=SchedulingResponse,
    summary="Move the next call by a delay, or to the nearest valid time",
)
async def reschedule_call(
    user_id: UUID,
    payload: RescheduleRequest,
    manager: Annotated[ScheduleStateManager, Depends(get_schedule_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SchedulingResponse:
    result = await retry_on_conflict(
        lambda: manager.reschedule(user_id, payload.delay_minutes),
        attempts=settings.scheduler_commit_retry_attempts,
    )
    return SchedulingResponse.from_result(result)
