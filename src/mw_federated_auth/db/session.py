"""
Database Session Management

Provides async SQLAlchemy engines and session factories for the primary
database and its optional read replica.

Engines are created on first use, so importing this module never opens a
connection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import settings


def _create_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache
def get_primary_engine() -> AsyncEngine:
    return _create_engine(settings.database_url)


@lru_cache
def get_replica_engine() -> Optional[AsyncEngine]:
    if not settings.replica_database_url:
        return None
    return _create_engine(settings.replica_database_url)


@lru_cache
def get_primary_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return make_sessionmaker(get_primary_engine())


@lru_cache
def get_replica_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Replica session factory; falls back to the primary when none is configured."""
    engine = get_replica_engine()
    if engine is None:
        return get_primary_sessionmaker()
    return make_sessionmaker(engine)


async def dispose_engines() -> None:
    for factory in (get_primary_engine, get_replica_engine):
        if factory.cache_info().currsize:
            engine = factory()
            if engine is not None:
                await engine.dispose()
