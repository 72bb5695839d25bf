"""SQLAlchemy async engine, session factory, and ORM table definitions."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from skane_engine.config import get_settings


# ── Base ──────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


# ── ORM tables ────────────────────────────────────────────────

class SkaneSessionRow(Base):
    """Persisted skane session.  Append-only: rows are never deleted."""

    __tablename__ = "skane_sessions"
    __table_args__ = (Index("ix_skane_sessions_owner_created", "owner_ref", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_ref: Mapped[str] = mapped_column(String(128))
    owner_kind: Mapped[str] = mapped_column(String(16), default="account")
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)

    # Classification
    primary_state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    activation_level: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Scores (bands stored as min / max pairs)
    before_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    before_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    after_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    after_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    skane_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Action & feedback
    chosen_action: Mapped[str | None] = mapped_column(String(64), nullable=True)
    feedback: Mapped[str | None] = mapped_column(String(16), nullable=True)
    feedback_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    share_prompted: Mapped[bool] = mapped_column(Boolean, default=False)
    unresolved: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class GuestMigrationRow(Base):
    """One row per guest token merged into an account (at-most-once)."""

    __tablename__ = "guest_migrations"

    guest_token: Mapped[str] = mapped_column(String(128), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(128), index=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    source: Mapped[str] = mapped_column(String(32))
    migrated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# ── Engine & session ──────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, echo=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(_get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables (idempotent)."""
    if engine is None:
        url = get_settings().database_url
        if url.startswith("sqlite") and "///" in url and ":memory:" not in url:
            # URL format: sqlite+aiosqlite:///path/to/db
            Path(url.split("///", 1)[-1]).parent.mkdir(parents=True, exist_ok=True)
        engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
