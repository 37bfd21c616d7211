"""Async engine and session factory for the PostgreSQL store.

The engine is created lazily by SQLAlchemy: importing this module opens no
connection. Sessions never autocommit; ExchangeService commits or rolls
back each operation itself.
"""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config.settings import settings


class Base(DeclarativeBase):
    """Declarative base for the rs_exchange table definitions."""


engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

# Entities are plain dataclasses, so nothing depends on expiring ORM state.
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session to use as the unit of work; closed on exit."""
    async with async_session_factory() as session:
        yield session
