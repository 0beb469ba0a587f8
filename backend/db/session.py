"""
PointLedger Database Session Management

One async engine serves both the store's source tables and the
engine-owned ledger tables. Workers and CLI runs build a short-lived
engine of their own via create_session_factory().
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def create_session_factory(database_url: str) -> tuple[AsyncEngine, async_sessionmaker]:
    """Engine + session factory for a single run. Caller disposes the engine."""
    run_engine = create_async_engine(database_url)
    return run_engine, async_sessionmaker(run_engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base for all point ledger models."""

    pass
