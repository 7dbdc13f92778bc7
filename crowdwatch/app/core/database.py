"""
Database layer — async SQL via SQLAlchemy 2.0.

Provides:
    • Async engine and session factory (created lazily from settings)
    • ``DocumentRow`` — the single table backing the SQL document store
    • Lifecycle helpers (create tables, dispose engine)

The engine speaks to any SQLAlchemy async driver; production uses
PostgreSQL (``postgresql+asyncpg://``), local runs and tests use SQLite
(``sqlite+aiosqlite://``).

Usage:
    from crowdwatch.app.core.database import create_engine, session_factory

    engine = create_engine("sqlite+aiosqlite:///./crowdwatch.db")
    await init_db(engine)
    async with session_factory(engine)() as session:
        ...
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from crowdwatch.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class DocumentRow(Base):
    """One document of one logical collection (zones, alerts, users, …)."""
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    body: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


# ── Engine ──
def create_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Build an async engine for ``url`` (defaults to ``settings.DATABASE_URL``).

    Pool sizing only applies to server databases; SQLite manages its own
    connection pool.
    """
    url = url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {
        "echo": settings.DATABASE_ECHO if echo is None else echo,
    }
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


# ── Session Factory ──
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
