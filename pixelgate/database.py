"""
Async SQLAlchemy engine and session management for the identity store and audit log.
Uses the asyncpg driver in production; any SQLAlchemy async URL works for local runs.
CRITICAL: expire_on_commit=False so audit records stay readable after the
mid-request commit that precedes forwarding.
"""
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    pass


def _engine_options(database_url: str, pool_size: int, max_overflow: int, echo: bool) -> dict:
    """Pool sizing only applies to server databases; SQLite rejects those arguments."""
    options: dict = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from pixelgate.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            **_engine_options(
                settings.database_url,
                settings.database_pool_size,
                settings.database_max_overflow,
                settings.app_env == "development",
            ),
        )
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """Session for use outside a request (scripts, admin tooling)."""
    return _get_session_factory()()


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _async_session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.
    Requests never share a session, so concurrent ingestions do not serialize
    on anything but the database itself.
    """
    session_factory = _get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Database session error, rolling back: %s", str(e))
            await session.rollback()
            raise
