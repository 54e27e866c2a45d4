"""Engine and session lifecycle for the profile database.

The engine is created lazily from ``settings.database_url`` and disposed by
``close_async_engine()`` at shutdown, after which the next call builds a
fresh one.
"""

from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncGenerator, Dict

from fastapi import Depends
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from discogate.app.core.config import settings
from discogate.app.core.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> Dict[str, Any]:
    # SQLite drivers reject queue pool sizing arguments.
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": True,
    }


def get_async_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = settings.database_url
        _engine = create_async_engine(url, **_engine_options(url))
        logger.info(f"Created async engine for {make_url(url).get_backend_name()}")
    return _engine


def get_async_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_async_engine(), expire_on_commit=False, autoflush=False
        )
    return _session_maker


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session outside of a request, e.g. in scripts."""
    async with get_async_session_maker()() as session:
        yield session


async def init_async_db() -> None:
    """Create missing tables; existing ones are left untouched."""
    from discogate.app.db.models import Base

    async with get_async_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_async_engine() -> None:
    global _engine, _session_maker

    if _engine is None:
        return
    engine, _engine, _session_maker = _engine, None, None
    try:
        await engine.dispose()
    except RuntimeError:
        # The loop that owned the connections is already closed (tests).
        logger.debug("Engine dispose skipped: event loop already closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed on success, rolled back on error."""
    async with get_async_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


SessionDep = Annotated[AsyncSession, Depends(get_db)]
