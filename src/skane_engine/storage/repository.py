"""Data-access layer — thin async wrappers around SQLAlchemy queries.

Every SQLAlchemy failure surfaces as :class:`PersistenceUnavailableError`.
Nothing here retries; retry policy belongs to the caller.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import AsyncIterator

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skane_engine.errors import PersistenceUnavailableError
from skane_engine.models import (
    Band,
    FeedbackOutcome,
    FeedbackValue,
    MigrationResult,
    OwnerKind,
    PrimaryState,
    SessionStatus,
    SkaneSession,
)
from skane_engine.storage.database import GuestMigrationRow, SkaneSessionRow, get_session_factory

logger = structlog.get_logger(__name__)


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    SESSION_MISSING = "session_missing"


def _band(lo: float | None, hi: float | None) -> Band | None:
    if lo is None or hi is None:
        return None
    return Band(min=lo, max=hi)


def row_to_session(row: SkaneSessionRow) -> SkaneSession:
    return SkaneSession(
        id=row.id,
        owner_ref=row.owner_ref,
        owner_kind=OwnerKind(row.owner_kind),
        created_at=row.created_at,
        status=SessionStatus(row.status),
        primary_state=PrimaryState(row.primary_state) if row.primary_state else None,
        confidence=row.confidence,
        activation_level=row.activation_level,
        before_score=_band(row.before_min, row.before_max),
        chosen_action=row.chosen_action,
        after_score=_band(row.after_min, row.after_max),
        feedback=FeedbackValue(row.feedback) if row.feedback else None,
        skane_index=row.skane_index,
        share_prompted=bool(row.share_prompted),
        unresolved=bool(row.unresolved),
        feedback_at=row.feedback_at,
    )


def session_to_row(s: SkaneSession) -> SkaneSessionRow:
    return SkaneSessionRow(
        id=s.id,
        owner_ref=s.owner_ref,
        owner_kind=s.owner_kind.value,
        created_at=s.created_at,
        status=s.status.value,
        primary_state=s.primary_state.value if s.primary_state else None,
        confidence=s.confidence,
        activation_level=s.activation_level,
        before_min=s.before_score.min if s.before_score else None,
        before_max=s.before_score.max if s.before_score else None,
        after_min=s.after_score.min if s.after_score else None,
        after_max=s.after_score.max if s.after_score else None,
        skane_index=s.skane_index,
        chosen_action=s.chosen_action,
        feedback=s.feedback.value if s.feedback else None,
        feedback_at=s.feedback_at,
        share_prompted=s.share_prompted,
        unresolved=s.unresolved,
    )


class BaseRepository:
    """Shared base with session management for all repositories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        factory = self._factory or get_session_factory()
        try:
            async with factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("repository.unavailable", repository=type(self).__name__, error=str(exc))
            raise PersistenceUnavailableError("Persistence layer unavailable.") from exc


class SessionRepository(BaseRepository):
    """Append-only storage for :class:`SkaneSession` rows."""

    # ── Write ─────────────────────────────────────────────────

    async def add(self, skane: SkaneSession) -> None:
        async with self._session() as session:
            session.add(session_to_row(skane))
            await session.commit()

    async def complete_feedback(
        self,
        session_id: str,
        outcome: FeedbackOutcome,
        at: datetime,
    ) -> bool:
        """Record feedback iff the row is still awaiting it.

        The ``status`` guard makes this the single serialisation point for
        feedback: of two concurrent writers exactly one sees ``True``.
        """
        stmt = (
            update(SkaneSessionRow)
            .where(
                SkaneSessionRow.id == session_id,
                SkaneSessionRow.status == SessionStatus.AWAITING_FEEDBACK.value,
            )
            .values(
                status=SessionStatus.COMPLETED.value,
                feedback=outcome.feedback.value,
                after_min=outcome.after_score.min,
                after_max=outcome.after_score.max,
                skane_index=outcome.skane_index,
                share_prompted=outcome.should_offer_share,
                unresolved=outcome.unresolved,
                feedback_at=at,
                updated_at=at,
            )
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    # ── Read ──────────────────────────────────────────────────

    async def get(self, session_id: str) -> SkaneSession | None:
        async with self._session() as session:
            row = await session.get(SkaneSessionRow, session_id)
            return row_to_session(row) if row is not None else None

    async def latest_for_owner(
        self,
        owner_ref: str,
        since: datetime | None = None,
    ) -> SkaneSession | None:
        stmt = select(SkaneSessionRow).where(SkaneSessionRow.owner_ref == owner_ref)
        if since is not None:
            stmt = stmt.where(SkaneSessionRow.created_at >= since)
        stmt = stmt.order_by(SkaneSessionRow.created_at.desc()).limit(1)
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            return row_to_session(row) if row is not None else None

    async def list_for_owner(
        self,
        owner_ref: str,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[SkaneSession]:
        order = SkaneSessionRow.created_at.desc() if newest_first else SkaneSessionRow.created_at.asc()
        stmt = select(SkaneSessionRow).where(SkaneSessionRow.owner_ref == owner_ref).order_by(order)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [row_to_session(r) for r in result.scalars().all()]


class MigrationRepository(BaseRepository):
    """Ledger of guest tokens already merged into an account."""

    async def get(self, guest_token: str) -> MigrationResult | None:
        async with self._session() as session:
            row = await session.get(GuestMigrationRow, guest_token)
            if row is None:
                return None
            return MigrationResult(migrated=False, session_id=row.session_id, source="already_migrated")

    async def claim(
        self,
        guest_token: str,
        account_id: str,
        at: datetime,
        *,
        reown_id: str | None = None,
        new_session: SkaneSession | None = None,
    ) -> ClaimOutcome:
        """Record the token and move its session in one transaction.

        Exactly one of *reown_id* or *new_session* is given.  The ledger row
        is only committed together with the session change; a re-own that
        matches no guest row rolls both back.
        """
        if new_session is not None:
            session_id, source = new_session.id, "summary"
        elif reown_id is not None:
            session_id, source = reown_id, "reowned"
        else:
            raise ValueError("claim() needs reown_id or new_session")

        async with self._session() as session:
            session.add(
                GuestMigrationRow(
                    guest_token=guest_token,
                    account_id=account_id,
                    session_id=session_id,
                    source=source,
                )
            )
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                return ClaimOutcome.ALREADY_CLAIMED

            if new_session is not None:
                session.add(session_to_row(new_session))
            else:
                result = await session.execute(
                    update(SkaneSessionRow)
                    .where(SkaneSessionRow.id == reown_id, SkaneSessionRow.owner_ref == guest_token)
                    .values(owner_ref=account_id, owner_kind=OwnerKind.ACCOUNT.value, updated_at=at)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    return ClaimOutcome.SESSION_MISSING

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return ClaimOutcome.ALREADY_CLAIMED
            return ClaimOutcome.CLAIMED
