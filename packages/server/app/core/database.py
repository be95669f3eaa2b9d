"""
Database connection and session management.

Sessions opened through ``get_session`` / ``get_session_context`` publish the
status events queued on them (see ``app.core.events``) right after a
successful commit. A rollback discards them.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings
from app.core.events import discard_pending_events, dispatch_post_commit_events

_engine: AsyncEngine | None = None
_session_factory: sessionmaker | None = None


def configure_database(url: Optional[str] = None, **engine_kwargs: Any) -> AsyncEngine:
    """(Re)bind the process-wide engine and session factory."""
    global _engine, _session_factory
    settings = get_settings()
    _engine = create_async_engine(
        url or settings.database_url,
        echo=settings.debug,
        future=True,
        **engine_kwargs,
    )
    _session_factory = sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_database()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        configure_database()
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def init_db():
    """Create all tables (development and tests)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending_events(session)
            raise
        await dispatch_post_commit_events(session)


@asynccontextmanager
async def get_session_context(factory: Optional[sessionmaker] = None):
    """Context manager for use outside of FastAPI request lifecycle.

    Each use is its own transaction.
    """
    async with (factory or get_session_factory())() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending_events(session)
            raise
        await dispatch_post_commit_events(session)
