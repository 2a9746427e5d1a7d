"""Pytest configuration and shared fixtures.

Run with:
    pytest tests/                          # Run all tests
    pytest tests/test_service.py -v        # Run specific test file

Every test gets its own SQLite file database under ``tmp_path`` and a
``FakeClock`` that only moves when the test advances it.
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from leadflow.config import EscalationPolicy, FollowUpCadence, Settings
from leadflow.db.models import Base
from leadflow.db.session import build_engine, build_session_factory
from leadflow.observability.metrics import MetricsCollector
from leadflow.workflow.service import WorkflowService

from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test, schema created from the models."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadflow_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def service(session_factory, clock, metrics, test_settings) -> WorkflowService:
    return WorkflowService(
        session_factory,
        clock=clock,
        policy=EscalationPolicy(),
        cadence=FollowUpCadence(),
        metrics=metrics,
        config=test_settings,
    )
