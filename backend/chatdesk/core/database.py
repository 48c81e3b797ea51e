"""
Async database engine, session factory, and ORM base.

Rules enforced:
  • Every DB call goes through AsyncSession.
  • Engine and session factory are built from Settings by the app factory
    and carried on AppContext, never created at import time.
  • The declarative Base is shared across all models so Alembic can
    auto-detect schema changes from a single metadata object.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from chatdesk.core.config import Settings


# ── Engine ──────────────────────────────────────────────────
def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine.

    pool_pre_ping: drop stale connections before reuse
    echo: SQL logging, only in debug mode
    """
    connect_args: dict = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        # Concurrent writers wait on the file lock instead of failing fast.
        connect_args["timeout"] = 30

    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


# ── Session factory ─────────────────────────────────────────
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # avoid lazy-load issues after commit
    )


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""

