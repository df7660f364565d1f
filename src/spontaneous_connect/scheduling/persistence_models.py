"""
SQLAlchemy models for scheduling persistence.

Table layout: users (scheduling profile columns only), blocked_times,
schedule_helper (one row per user, optimistic locking on lock_version) and
the append-only call_history.
"""

from datetime import date, datetime, time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from spontaneous_connect.scheduling.models import CallOutcome, RepeatKind
from spontaneous_connect.shared.database import Base


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class UserRow(Base):
    """Scheduling preferences of a user (profile columns only)."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    active_days: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="Mon,Tue,Wed,Thu,Fri,Sat,Sun",
    )
    morning_start: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    evening_end: Mapped[time] = mapped_column(Time, nullable=False, default=time(21, 0))
    daily_call_limit: Mapped[int | None] = mapped_column(Integer, nullable=True, default=3)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BlockedTimeRow(Base):
    """Recurring do-not-call interval."""

    __tablename__ = "blocked_times"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    block_name: Mapped[str] = mapped_column(String(50), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    repeat_type: Mapped[RepeatKind] = mapped_column(
        SQLEnum(RepeatKind, name="block_repeat_enum", values_callable=_enum_values),
        nullable=False,
        default=RepeatKind.DAILY,
    )
    days_of_week: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class ScheduleHelperRow(Base):
    """Per-user scheduling state guarded by ``lock_version``."""

    __tablename__ = "schedule_helper"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    next_call_due: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_call_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    calls_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_generated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lock_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class CallHistoryRow(Base):
    """Append-only record of call attempts."""

    __tablename__ = "call_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    platform_used: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[CallOutcome] = mapped_column(
        SQLEnum(CallOutcome, name="call_status_enum", values_callable=_enum_values),
        nullable=False,
    )
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
