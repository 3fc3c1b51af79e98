"""Database session management."""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from instancehub.app.config import get_settings
from instancehub.core.logging_schema import LogEvent
from instancehub.core.models import Instance  # noqa: F401 - registers table metadata

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_kwargs(url: str) -> dict:
    settings = get_settings()
    kwargs: dict = {"echo": settings.database.echo}
    # SQLite has no connection pool to size
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_recycle=3600,
            pool_pre_ping=True,
        )
    return kwargs


async def init_db(url: str | None = None, create_tables: bool = True) -> None:
    global _engine, _session_factory

    url = url or str(get_settings().database.url)
    _engine = create_async_engine(url, **_engine_kwargs(url))
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(SQLModel.metadata.create_all)
        logger.info(
            "Database connected",
            extra={"event": LogEvent.DB_CONNECTED, "dialect": _engine.dialect.name},
        )
    except Exception as e:
        logger.error(
            "Database connection failed",
            extra={
                "event": LogEvent.DB_ERROR,
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        raise


async def close_db() -> None:
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized")
    return _engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get session factory for creating new sessions."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory
