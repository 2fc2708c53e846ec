"""
Database connection and session management.
Uses SQLAlchemy async with aiosqlite.
"""

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from typing import AsyncGenerator

from .config import settings


def create_engine(url: str) -> AsyncEngine:
    """Create an async engine, applying SQLite pragmas when relevant."""
    engine = create_async_engine(url, echo=False, future=True)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # ON DELETE CASCADE is a no-op without this
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = create_engine(settings.DATABASE_URL)
AsyncSessionLocal = create_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    session_factory = getattr(request.app.state, "session_factory", AsyncSessionLocal)
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = engine):
    """Initialize database tables."""
    from . import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: AsyncEngine = engine):
    """Close database connections."""
    await bind.dispose()
