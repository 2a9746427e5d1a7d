"""Async database session management.

Production setup with:
- Asyncpg driver on PostgreSQL, aiosqlite for local runs and tests
- Connection pooling sized for the API plus one sweep worker
- Proper transaction handling
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from leadflow.config import settings

# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

# Pool sizing (server databases only; SQLite manages its own pool):
# - 10 connections for API traffic + sweep
# - overflow for bursts (up to 20)
# - recycle connections every hour (prevent stale)
# - pre-ping to detect bad connections


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"echo": False}
    return {
        "pool_size": 10,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "echo": False,
    }


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine with pool settings appropriate for the backend."""
    return create_async_engine(database_url, **_engine_kwargs(database_url))


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues
        autoflush=False,
    )


async_engine = build_engine(settings.database_url)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = build_session_factory(async_engine)


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION MANAGEMENT
# ═══════════════════════════════════════════════════════════════════════════════

async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create tables from the ORM metadata.

    In production, use the Alembic migration. This is for dev/test only.
    """
    from leadflow.db.models import Base

    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine | None = None) -> None:
    """Clean shutdown: dispose of all connections."""
    await (engine or async_engine).dispose()
