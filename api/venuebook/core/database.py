"""Async database engine and session management.

The request-scoped session (get_db) serves reads and simple writes. Operations
that must own their transaction boundary (booking, cancellation, reconciliation)
take a session factory and open their own sessions.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from venuebook.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def build_session_factory(database_url: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create a throwaway engine + session factory for short-lived event loops.

    Celery tasks run each pass under a fresh asyncio.run(), so pooled
    connections from the module-level engine cannot be reused there.
    Returns (engine, session_factory); the caller disposes the engine.
    """
    task_engine = create_async_engine(database_url, echo=settings.database_echo, poolclass=NullPool)
    return task_engine, async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session. Used as a FastAPI dependency."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
