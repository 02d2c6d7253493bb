from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import Settings, get_settings

_ENGINE: Optional[AsyncEngine] = None
_SESSION_MAKER: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(settings: Settings) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.SQL_ECHO}
    if not settings.is_sqlite:
        options.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return options


# PUBLIC_INTERFACE
def get_engine() -> AsyncEngine:
    """Process-wide AsyncEngine, created on first use."""
    global _ENGINE
    if _ENGINE is None:
        settings = get_settings()
        _ENGINE = create_async_engine(settings.async_database_url, **_engine_options(settings))
    return _ENGINE


# PUBLIC_INTERFACE
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the global engine.

    Objects stay usable after commit (expire_on_commit=False) because services
    return ORM rows that routes serialize after the transaction ends.
    """
    global _SESSION_MAKER
    if _SESSION_MAKER is None:
        _SESSION_MAKER = async_sessionmaker(bind=get_engine(), expire_on_commit=False, autoflush=False)
    return _SESSION_MAKER


# PUBLIC_INTERFACE
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, closed after the response."""
    async with get_session_maker()() as session:
        yield session


# PUBLIC_INTERFACE
@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session for scripts and startup jobs: commit on success, roll back on error."""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# PUBLIC_INTERFACE
async def dispose_engine() -> None:
    """Dispose the global engine (application shutdown)."""
    global _ENGINE, _SESSION_MAKER
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None
    _SESSION_MAKER = None
