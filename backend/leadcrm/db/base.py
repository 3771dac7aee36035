"""
Database base configuration and utilities.
"""
import asyncio
from typing import Awaitable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from leadcrm.core.config import settings
from leadcrm.core.errors import StorageTimeoutError

T = TypeVar("T")

# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = metadata


# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.LOG_LEVEL == "DEBUG",
    pool_pre_ping=True,
    future=True
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncSession:
    """Dependency that provides a database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def run_with_timeout(operation: Awaitable[T], timeout: Optional[float] = None) -> T:
    """
    Await a storage-bound operation, giving up after ``timeout`` seconds.

    The pending operation is cancelled and StorageTimeoutError raised; the
    caller's session is rolled back by ``get_db`` so no partial write survives.
    """
    if timeout is None:
        timeout = settings.STORAGE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError:
        raise StorageTimeoutError()


async def init_db() -> None:
    """Initialize database tables."""
    # Register all mappers on the metadata before create_all
    import leadcrm.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
