"""
Pydantic schemas for the scheduling API.
"""

from datetime import date, datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from spontaneous_connect.scheduling.models import (
    CallAttemptRecord,
    CallOutcome,
    RelaxationApplied,
    ScheduleState,
    SchedulingResult,
    ValidationResult,
)
from spontaneous_connect.scheduling.utils import (
    friendly_time_description,
    is_time_to_call,
    time_until_call,
)


class ScheduleStateResponse(BaseModel):
    """Current schedule state of a user."""

    model_config = ConfigDict(from_attributes=True)

    next_call_due: datetime | None = None
    last_call_time: datetime | None = None
    calls_today: int
    daily_reset_date: date
    last_generated: datetime | None = None
    version_token: int
    time_until_call: str | None = None
    friendly_description: str | None = None
    is_time_to_call: bool = False

    @classmethod
    def from_state(
        cls,
        state: ScheduleState,
        now: datetime,
        tolerance_minutes: float = 5,
    ) -> "ScheduleStateResponse":
        response = cls.model_validate(state)
        if state.next_call_due is not None:
            response.time_until_call = time_until_call(state.next_call_due, now)
            response.friendly_description = friendly_time_description(state.next_call_due, now)
            response.is_time_to_call = is_time_to_call(state.next_call_due, now, tolerance_minutes)
        return response


class RelaxationResponse(BaseModel):
    description: str
    min_gap_minutes: float
    ignored_interval_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_relaxation(cls, relaxation: RelaxationApplied) -> "RelaxationResponse":
        return cls(
            description=relaxation.description,
            min_gap_minutes=relaxation.min_gap_minutes,
            ignored_interval_ids=list(relaxation.ignored_interval_ids),
        )


class SchedulingResponse(BaseModel):
    """A committed next-call time and how it was found."""

    committed_instant: datetime
    attempts: int
    constraints: list[str] = Field(default_factory=list)
    strategy: str | None = None
    relaxation: RelaxationResponse | None = None
    version_token: int | None = None

    @classmethod
    def from_result(cls, result: SchedulingResult) -> "SchedulingResponse":
        return cls(
            committed_instant=result.instant,
            attempts=result.attempts,
            constraints=list(result.constraints),
            strategy=result.strategy,
            relaxation=RelaxationResponse.from_relaxation(result.relaxation) if result.relaxation else None,
            version_token=result.state.version_token if result.state else None,
        )


class RecordAttemptRequest(BaseModel):
    """Outcome of the call the user was prompted for."""

    outcome: CallOutcome
    platform: str | None = Field(default=None, max_length=50)
    rating: int | None = Field(default=None, ge=1, le=5)
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("platform", "notes", mode="before")
    @classmethod
    def strip_blank(cls, v: str | None) -> str | None:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @model_validator(mode="after")
    def rating_only_for_called(self) -> "RecordAttemptRequest":
        if self.rating is not None and self.outcome is not CallOutcome.CALLED:
            raise ValueError("rating is only accepted for called outcomes")
        return self


class CallAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scheduled_time: datetime
    actual_time: datetime
    outcome: CallOutcome
    platform: str | None = None
    rating: int | None = None
    notes: str | None = None
    metadata: dict = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: CallAttemptRecord) -> "CallAttemptResponse":
        return cls.model_validate(record)


class RecordAttemptResponse(BaseModel):
    state: ScheduleStateResponse
    record: CallAttemptResponse


class ValidateInstantRequest(BaseModel):
    instant: datetime

    @field_validator("instant")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


class ValidateInstantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    valid: bool
    reason: str | None = None
    suggestion: datetime | None = None

    @classmethod
    def from_validation(cls, validation: ValidationResult) -> "ValidateInstantResponse":
        return cls.model_validate(validation)


class RescheduleRequest(BaseModel):
    delay_minutes: int = Field(ge=0, le=7 * 24 * 60)


class ErrorResponse(BaseModel):
    code: str
    message: str
    retryable: bool
    details: dict | None = None
