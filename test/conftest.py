"""
Pytest configuration and fixtures for the scheduling tests.
"""

from __future__ import annotations

import random
from collections.abc import AsyncGenerator
from datetime import datetime, time, timezone
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from spontaneous_connect.scheduling import persistence_models  # noqa: F401
from spontaneous_connect.scheduling.models import (
    DailyWindow,
    SchedulerSettings,
    UserSchedulingProfile,
    Weekday,
)
from spontaneous_connect.scheduling.orchestrator import SchedulingOrchestrator
from spontaneous_connect.scheduling.repository import InMemoryScheduleStore
from spontaneous_connect.scheduling.service import ScheduleStateManager
from spontaneous_connect.shared.database import Base

# 11:00 in Tokyo on Wednesday 2023-10-25.
NOW = datetime(2023, 10, 25, 2, 0, tzinfo=timezone.utc)


def fixed_clock(value: datetime = NOW):
    return lambda: value


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def tokyo_profile() -> UserSchedulingProfile:
    """Every day active, 09:00-21:00 Tokyo."""
    return UserSchedulingProfile(
        timezone="Asia/Tokyo",
        active_days=frozenset(Weekday),
        daily_window=DailyWindow(time(9, 0), time(21, 0)),
        daily_call_limit=3,
        min_gap_minutes=45,
        max_gap_minutes=360,
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings()


@pytest.fixture
def orchestrator(scheduler_settings: SchedulerSettings, rng: random.Random) -> SchedulingOrchestrator:
    return SchedulingOrchestrator(scheduler_settings, rng=rng)


@pytest.fixture
def memory_store(user_id: UUID, tokyo_profile: UserSchedulingProfile) -> InMemoryScheduleStore:
    store = InMemoryScheduleStore()
    store.put_profile(user_id, tokyo_profile)
    return store


@pytest.fixture
def manager(
    memory_store: InMemoryScheduleStore,
    orchestrator: SchedulingOrchestrator,
) -> ScheduleStateManager:
    return ScheduleStateManager(memory_store, orchestrator, clock=fixed_clock())


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[Any, None]:
    """File-backed SQLite engine with the scheduling tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def api_client(memory_store: InMemoryScheduleStore) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the store and clock overridden."""
    from spontaneous_connect.main import app
    from spontaneous_connect.scheduling.router import get_clock, get_schedule_store

    app.dependency_overrides[get_schedule_store] = lambda: memory_store
    app.dependency_overrides[get_clock] = lambda: fixed_clock()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
