"""
Database engine and sessions for the scoring service.

Request handlers get one session per request through get_db. Work outside a
request (workers, batch sweeps, detached rescores) opens its own session per
deal through async_session_factory.

expire_on_commit=False: attributes stay loaded after commit.
"""
import logging
from typing import AsyncGenerator
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker | None = None


class Base(DeclarativeBase):
    pass


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from portalscore.config import get_settings
        settings = get_settings()
        engine_kwargs = {"echo": settings.app_env == "development"}
        # SQLite (local runs, tests) has no connection pool to size
        if make_url(settings.database_url).get_backend_name() != "sqlite":
            engine_kwargs["pool_size"] = settings.database_pool_size
            engine_kwargs["max_overflow"] = settings.database_max_overflow
            engine_kwargs["pool_pre_ping"] = True
        _engine = create_async_engine(settings.database_url, **engine_kwargs)
    return _engine


def _get_session_maker() -> async_sessionmaker:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _session_maker


def async_session_factory() -> AsyncSession:
    """A fresh session for work outside a request: workers, sweeps, detached rescores."""
    return _get_session_maker()()


async def dispose_engine() -> None:
    """Close pooled connections on shutdown. Safe to call when no engine was created."""
    global _engine, _session_maker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None
    logger.info("Database connections closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Commits when the handler returns, rolls back on error."""
    async with _get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Request session rolled back: %s", str(e))
            await session.rollback()
            raise
