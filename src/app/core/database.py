"""Async SQLAlchemy engine and session factory.

Provides:
- Base: Declarative base for all chat tables (tenants, widgets,
  conversations, messages, leads)
- get_session(): AsyncSession generator used by repositories
- init_db() / close_db(): lifespan hooks

Tenant isolation is row-based: every table below ``tenants`` carries a
tenant_id column and repositories filter on it in every query.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.app.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options: dict = {"echo": False, "pool_pre_ping": True}
        if not settings.DATABASE_URL.startswith("sqlite"):
            options.update(pool_size=20, max_overflow=10)
        _engine = create_async_engine(settings.DATABASE_URL, **options)
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all chat models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the shared engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create tables that don't exist yet (development convenience).

    Production schemas are managed by Alembic.
    """
    # Import models so they register on Base.metadata
    from src.app.models import chat  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
