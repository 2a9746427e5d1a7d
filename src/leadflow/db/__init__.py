"""Database module for leadflow.

Exports:
- Base: SQLAlchemy declarative base
- models: workflow state + communication ledger ORM models
- session: Async session management
"""

from leadflow.db.models import Base
from leadflow.db.session import AsyncSessionLocal, build_engine, build_session_factory

__all__ = ["Base", "AsyncSessionLocal", "build_engine", "build_session_factory"]
