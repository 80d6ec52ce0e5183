"""
Engine and session management.

The API process owns one pooled engine, set up by ``init_database`` in the
application lifespan. Celery tasks open their own short-lived engine
through ``standalone_session``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings
from .models.base import Base

logger = logging.getLogger(__name__)

engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_database_engine(database_url: Optional[str] = None) -> AsyncEngine:
    settings = get_settings()
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        # Writers queue on SQLite's file lock for up to 5s
        return create_async_engine(url, echo=settings.debug, connect_args={"timeout": 5})

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
        connect_args={"server_settings": {"application_name": "hotel_reservation_engine"}}
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=True)


async def create_tables(target: AsyncEngine) -> None:
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_database() -> None:
    global engine, async_session_factory

    engine = create_database_engine()
    async_session_factory = create_session_factory(engine)
    await create_tables(engine)

    logger.info("Database ready")


async def close_database() -> None:
    if engine:
        await engine.dispose()
        logger.info("Database connections closed")


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session that commits when the block exits cleanly and rolls back otherwise.

    Raises:
        RuntimeError: If ``init_database`` has not run.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def standalone_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session on a private engine, for Celery tasks that run each job in a
    fresh event loop and cannot share the application's pooled connections.
    """
    task_engine = create_database_engine()
    try:
        async with create_session_factory(task_engine)() as session:
            yield session
    finally:
        await task_engine.dispose()


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a block of writes as one transaction on ``session``.

    Any read transaction left open by earlier queries is ended first so
    the block starts from a fresh snapshot. The block commits on normal
    exit and rolls back on any exception, leaving nothing partially applied.
    """
    if session.in_transaction():
        await session.commit()

    async with session.begin():
        yield session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_db_session() as session:
        yield session
