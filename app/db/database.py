"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def create_task_engine() -> AsyncEngine:
    """Engine bound to the current event loop, for Celery tasks"""
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )


@asynccontextmanager
async def task_session_factory() -> AsyncIterator[async_sessionmaker]:
    """
    Session factory for Celery tasks.

    Builds a fresh engine on the current event loop, avoiding the
    "attached to a different loop" error that occurs when reusing the
    module-level engine across event loops in Celery workers. The engine
    is disposed when the block exits, so every worker started inside it
    must be awaited before leaving.
    """
    task_engine = create_task_engine()
    try:
        yield async_sessionmaker(
            bind=task_engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
    finally:
        await task_engine.dispose()
